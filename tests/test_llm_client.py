"""
Tests for the Gemini chat client: history seeding, fragment streams and
message construction. The chat model itself is faked.
"""

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from turnchat.chatbot.llm_client import (
    LLMClient,
    chunk_text,
    normalize_history,
    to_content_block,
)
from turnchat.errors import ConfigurationError, StreamError

from tests.conftest import FakeChatModel, FakeChunk


class TestHistory:
    """Seeding a session from stored conversation history."""

    def test_first_text_part_only(self):
        history = [
            {"role": "user", "parts": [{"text": "first"}, {"text": "second"}]},
            {"role": "model", "parts": [{"text": "answer"}]},
        ]
        assert normalize_history(history) == [
            {"role": "user", "parts": [{"text": "first"}]},
            {"role": "model", "parts": [{"text": "answer"}]},
        ]

    def test_missing_parts_become_empty_text(self):
        assert normalize_history([{"role": "user", "parts": []}]) == [
            {"role": "user", "parts": [{"text": ""}]}
        ]

    @pytest.mark.parametrize("history", [None, []])
    def test_empty_history_gets_placeholder(self, history):
        assert normalize_history(history) == [{"role": "user", "parts": [{"text": ""}]}]

    def test_build_messages_maps_roles_and_skips_placeholder(self):
        client = LLMClient(llm=FakeChatModel())
        session = client.open_session(
            [
                {"role": "user", "parts": [{"text": ""}]},
                {"role": "user", "parts": [{"text": "Q"}]},
                {"role": "model", "parts": [{"text": "A"}]},
            ]
        )

        messages = session.build_messages(["next"])

        assert [type(m) for m in messages] == [HumanMessage, AIMessage, HumanMessage]
        assert [m.content for m in messages] == ["Q", "A", "next"]


class TestContentBlocks:
    def test_text(self):
        assert to_content_block("hi") == {"type": "text", "text": "hi"}

    def test_inline_image(self):
        block = to_content_block({"inlineData": {"data": "QUJD", "mimeType": "image/jpeg"}})
        assert block == {"type": "image_url", "image_url": "data:image/jpeg;base64,QUJD"}

    def test_typed_block_passes_through(self):
        block = {"type": "image_url", "image_url": "https://example.com/cat.png"}
        assert to_content_block(block) == block

    def test_unknown_part_rejected(self):
        with pytest.raises(ValueError):
            to_content_block({"bogus": 1})

    def test_chunk_text_handles_block_lists(self):
        chunk = FakeChunk([{"type": "text", "text": "a"}, "b", {"type": "thinking", "thinking": "x"}])
        assert chunk_text(chunk) == "ab"


class TestStreaming:
    """send_streaming yields fragments lazily and only once."""

    @pytest.mark.asyncio
    async def test_fragments_in_order(self):
        session = LLMClient(llm=FakeChatModel(["a", "b", "c"])).open_session([])

        fragments = [f async for f in session.send_streaming(["go"])]

        assert fragments == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_lazy_until_iterated(self):
        model = FakeChatModel(["a"])
        session = LLMClient(llm=model).open_session([])

        session.send_streaming(["go"])

        assert model.calls == []

    @pytest.mark.asyncio
    async def test_history_extended_after_drain(self):
        session = LLMClient(llm=FakeChatModel(["Hi", " there"])).open_session([])

        async for _ in session.send_streaming(["Hello"]):
            pass

        assert session.history[-2:] == [
            {"role": "user", "parts": [{"text": "Hello"}]},
            {"role": "model", "parts": [{"text": "Hi there"}]},
        ]

    @pytest.mark.asyncio
    async def test_not_restartable(self):
        session = LLMClient(llm=FakeChatModel(["a"])).open_session([])
        stream = session.send_streaming(["go"])
        async for _ in stream:
            pass

        with pytest.raises(StreamError):
            async for _ in stream:
                pass

    @pytest.mark.asyncio
    async def test_model_failure_becomes_stream_error(self):
        session = LLMClient(llm=FakeChatModel(["Partial", "x"], fail_after=1)).open_session([])
        received = []

        with pytest.raises(StreamError):
            async for fragment in session.send_streaming(["go"]):
                received.append(fragment)

        assert received == ["Partial"]
        assert len(session.history) == 1

    def test_parts_required(self):
        session = LLMClient(llm=FakeChatModel()).open_session([])
        with pytest.raises(ValueError):
            session.send_streaming([])


class TestClientSetup:
    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)

        with pytest.raises(ConfigurationError):
            LLMClient()

    def test_only_gemini(self):
        with pytest.raises(ConfigurationError):
            LLMClient(provider="openai", llm=FakeChatModel())

    def test_default_model(self):
        assert LLMClient(llm=FakeChatModel()).model == "gemini-2.0-flash"

    @pytest.mark.asyncio
    async def test_transcribe(self):
        model = FakeChatModel(transcript="  What is AI \n")
        client = LLMClient(llm=model)

        text = await client.transcribe(b"RIFF....", language="en-US")

        assert text == "What is AI"
        blocks = model.calls[0][0].content
        assert blocks[1]["type"] == "media"
        assert blocks[1]["mime_type"] == "audio/wav"
