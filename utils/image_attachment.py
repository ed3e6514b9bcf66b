"""
Local image attachment.

Drives an ImageState the way an upload widget would: loading first, then
either both descriptors or an error. The stored descriptor carries the path
that gets persisted; the model descriptor carries the inline image data
sent with the question.
"""

import asyncio
import base64
import mimetypes
from pathlib import Path
from typing import Dict, Tuple

from turnchat.schema.core_schema import ImageState

ALLOWED_IMAGE_TYPES = {
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/gif",
    "image/heic",
    "image/heif",
}

MAX_IMAGE_BYTES = 8 * 1024 * 1024


def guess_image_type(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    if not mime or mime.lower() not in ALLOWED_IMAGE_TYPES:
        raise ValueError(f"Unsupported image type: {mime or path.suffix or 'unknown'}")
    return mime.lower()


def build_descriptors(path: Path, data: bytes, mime_type: str) -> Tuple[Dict[str, str], Dict[str, Dict[str, str]]]:
    """Return (stored_descriptor, model_descriptor) for an image."""
    stored = {"filePath": path.as_posix(), "name": path.name}
    model = {
        "inlineData": {
            "data": base64.b64encode(data).decode("ascii"),
            "mimeType": mime_type,
        }
    }
    return stored, model


class LocalImageAttachment:
    """Attach an image file from disk to the in-flight turn."""

    def __init__(self, max_bytes: int = MAX_IMAGE_BYTES) -> None:
        self.max_bytes = max_bytes

    async def attach(self, path: str, image_state: ImageState) -> ImageState:
        """Load ``path`` into ``image_state``; failures end up in ``image_state.error``."""
        image_state.begin_upload()
        try:
            file_path = Path(path).expanduser()
            mime_type = guess_image_type(file_path)
            data = await asyncio.to_thread(file_path.read_bytes)
            if not data:
                raise ValueError("Image file is empty.")
            if len(data) > self.max_bytes:
                raise ValueError(f"Image is larger than {self.max_bytes // (1024 * 1024)} MB.")
        except (OSError, ValueError) as e:
            image_state.fail(str(e))
            return image_state

        stored, model = build_descriptors(file_path, data, mime_type)
        image_state.complete(stored, model)
        return image_state
