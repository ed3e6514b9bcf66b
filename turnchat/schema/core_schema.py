"""
Core Schema Definitions for the turn orchestrator

Conversation data arrives from the chat store in its wire shape
({role, parts: [{text}], img?}); the orchestrator only ever reads it.
The in-flight turn and its image state are owned locally and mutated
while a question is answered.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .schema_config import Role


# ============================================================================
# CONVERSATION (external, read-only)
# ============================================================================

class MessagePart(BaseModel):
    text: str = ""


class HistoryEntry(BaseModel):
    """One stored message as returned by the chat store."""
    model_config = ConfigDict(extra="ignore")

    role: str = Field(..., description="'user' or 'model'")
    parts: List[MessagePart] = Field(default_factory=list)
    img: Optional[str] = Field(None, description="Storage path of an attached image")

    @property
    def text(self) -> str:
        """First text part only; richer multi-part content is not preserved."""
        return self.parts[0].text if self.parts else ""


class Conversation(BaseModel):
    """A conversation fetched from the store, identified by an opaque id."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(..., alias="_id")
    history: List[HistoryEntry] = Field(default_factory=list)

    def turns(self) -> List["Turn"]:
        """Stored history as persisted turns; 'model' entries become assistant turns."""
        return [
            Turn(
                role=Role.USER if entry.role == "user" else Role.ASSISTANT,
                content=entry.text,
                image=entry.img,
            )
            for entry in self.history
        ]


class Turn(BaseModel):
    """A persisted message; immutable."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    image: Optional[str] = None


# ============================================================================
# IN-FLIGHT STATE (core-owned)
# ============================================================================

class ImageState(BaseModel):
    """
    Upload state produced by the image attachment adapter.

    is_loading implies both descriptors are empty; a stored descriptor means
    the upload succeeded and its path is safe to persist.
    """
    is_loading: bool = False
    error: str = ""
    stored_descriptor: Dict[str, Any] = Field(default_factory=dict)
    model_descriptor: Dict[str, Any] = Field(default_factory=dict)

    def begin_upload(self) -> None:
        self.is_loading = True
        self.error = ""
        self.stored_descriptor = {}
        self.model_descriptor = {}

    def complete(self, stored: Dict[str, Any], model: Dict[str, Any]) -> None:
        self.is_loading = False
        self.error = ""
        self.stored_descriptor = dict(stored)
        self.model_descriptor = dict(model)

    def fail(self, error: str) -> None:
        self.is_loading = False
        self.error = error or "Upload failed"
        self.stored_descriptor = {}
        self.model_descriptor = {}

    @property
    def stored_path(self) -> Optional[str]:
        return self.stored_descriptor.get("filePath") or None

    @property
    def is_empty(self) -> bool:
        return not (self.is_loading or self.error or self.stored_descriptor or self.model_descriptor)

    @classmethod
    def empty(cls) -> "ImageState":
        return cls()


class InFlightTurn(BaseModel):
    """The single mutable turn owned by a Turn Accumulator."""
    question_text: str = ""
    answer_buffer: str = ""
    image: ImageState = Field(default_factory=ImageState)

    def append(self, fragment: str) -> None:
        self.answer_buffer += fragment

    def reset(self) -> None:
        self.question_text = ""
        self.answer_buffer = ""
        self.image = ImageState.empty()


class PendingTurn(BaseModel):
    """Body of the persistence call; absent fields are omitted on the wire."""
    question: Optional[str] = None
    answer: str
    img: Optional[str] = None

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
