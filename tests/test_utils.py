"""
Tests for the local image attachment, the JSONL conversation logger and the
setup check.
"""

import base64
import json

import pytest

from turnchat.schema.core_schema import ImageState
from utils import validate_setup
from utils.conversation_logger import ConversationLogger
from utils.image_attachment import LocalImageAttachment

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class TestLocalImageAttachment:
    @pytest.mark.asyncio
    async def test_attach_png(self, tmp_path):
        path = tmp_path / "cat.png"
        path.write_bytes(PNG_BYTES)
        image = ImageState()

        await LocalImageAttachment().attach(str(path), image)

        assert not image.is_loading
        assert image.stored_path == path.as_posix()
        inline = image.model_descriptor["inlineData"]
        assert inline["mimeType"] == "image/png"
        assert base64.b64decode(inline["data"]) == PNG_BYTES

    @pytest.mark.asyncio
    async def test_unsupported_type(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello")
        image = ImageState()

        await LocalImageAttachment().attach(str(path), image)

        assert "Unsupported image type" in image.error
        assert image.stored_descriptor == {}

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        image = ImageState()

        await LocalImageAttachment().attach(str(tmp_path / "gone.png"), image)

        assert image.error
        assert not image.is_loading

    @pytest.mark.asyncio
    async def test_too_large(self, tmp_path):
        path = tmp_path / "big.jpg"
        path.write_bytes(b"\xff" * 64)
        image = ImageState()

        await LocalImageAttachment(max_bytes=16).attach(str(path), image)

        assert "larger than" in image.error


def read_lines(path):
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f]


class TestConversationLogger:
    def test_log_turn(self, tmp_path):
        log_path = tmp_path / "logs" / "chat.jsonl"
        logger = ConversationLogger(str(log_path))

        logger.log_turn("abc", "Hello", "Hi there", img="/uploads/cat.png")
        logger.log_turn("abc", None, "Continued")

        lines = read_lines(log_path)
        assert [(l["role"], l["content"]) for l in lines] == [
            ("user", "Hello"),
            ("assistant", "Hi there"),
            ("assistant", "Continued"),
        ]
        assert lines[0]["metadata"] == {"conversation_id": "abc", "img": "/uploads/cat.png"}

    def test_seed_overwrites(self, tmp_path):
        log_path = tmp_path / "chat.jsonl"
        logger = ConversationLogger(str(log_path))
        history = [
            {"role": "user", "parts": [{"text": "Q"}], "img": None},
            {"role": "model", "parts": [{"text": "A"}]},
        ]

        logger.seed_from_history("abc", history)
        logger.seed_from_history("abc", history)

        lines = read_lines(log_path)
        assert [(l["role"], l["content"]) for l in lines] == [("user", "Q"), ("assistant", "A")]


class TestValidateSetup:
    def test_missing_api_key_is_an_issue(self, monkeypatch, capsys):
        monkeypatch.setattr(validate_setup, "load_dotenv", lambda: None)
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)

        assert validate_setup.check_setup() is False
        assert "Set GEMINI_API_KEY" in capsys.readouterr().out

    def test_key_present(self, monkeypatch, capsys):
        monkeypatch.setattr(validate_setup, "load_dotenv", lambda: None)
        monkeypatch.setenv("GEMINI_API_KEY", "test-key")
        monkeypatch.setenv("TURNCHAT_API_BASE_URL", "http://store.test")

        assert validate_setup.check_setup() is True
        assert "TURNCHAT_API_BASE_URL = http://store.test" in capsys.readouterr().out
