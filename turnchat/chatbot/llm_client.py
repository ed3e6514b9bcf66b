"""
LLM Client Wrapper (Gemini + LangChain)

Streaming chat client for the turn orchestrator. A `ChatSession` is opened
once per conversation, seeded with the conversation's prior turns, and
produces answers as a lazy sequence of text fragments.
"""

import base64
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from dotenv import load_dotenv
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from ..errors import ConfigurationError, StreamError
from ..schema.core_schema import HistoryEntry
from ..schema.schema_config import DEFAULT_MODEL, SPEECH_LANGUAGE

load_dotenv()

logger = logging.getLogger(__name__)

Part = Union[str, Dict[str, Any]]

_MODEL_ROLES = {"model", "assistant", "ai"}


def normalize_history(history: Optional[Sequence[Any]]) -> List[Dict[str, Any]]:
    """
    Reduce stored history to ``{role, parts: [{text}]}`` entries.

    Only the first text part of each entry survives. An empty history becomes
    a single empty user entry so a session always has a seed.
    """
    normalized: List[Dict[str, Any]] = []
    for entry in history or []:
        if not isinstance(entry, HistoryEntry):
            entry = HistoryEntry.model_validate(entry)
        normalized.append({"role": entry.role, "parts": [{"text": entry.text}]})

    if not normalized:
        normalized.append({"role": "user", "parts": [{"text": ""}]})
    return normalized


def to_content_block(part: Part) -> Dict[str, Any]:
    """Convert one outgoing part (text or image model descriptor) to a LangChain block."""
    if isinstance(part, str):
        return {"type": "text", "text": part}
    if "type" in part:
        return dict(part)
    inline = part.get("inlineData") or part.get("inline_data")
    if inline:
        mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
        return {"type": "image_url", "image_url": f"data:{mime};base64,{inline['data']}"}
    raise ValueError(f"Unsupported message part: {sorted(part)}")


def chunk_text(chunk: Any) -> str:
    """Extract the text carried by a streamed message chunk."""
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        pieces = []
        for block in content:
            if isinstance(block, str):
                pieces.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                pieces.append(block.get("text", ""))
        return "".join(pieces)
    return str(content or "")


class FragmentStream:
    """
    Forward-only, single-use async sequence of answer fragments.

    The session history is only extended once the stream has been drained
    to the end; an abandoned or failed stream leaves it untouched.
    """

    def __init__(self, session: "ChatSession", parts: List[Part]) -> None:
        self._session = session
        self._parts = parts
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise StreamError("Fragment stream is not restartable")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        messages = self._session.build_messages(self._parts)
        answer: List[str] = []
        try:
            async for chunk in self._session.llm.astream(messages):
                text = chunk_text(chunk)
                answer.append(text)
                yield text
        except StreamError:
            raise
        except Exception as e:
            raise StreamError(f"Model stream failed: {e}", details={"cause": type(e).__name__}) from e

        self._session.record_exchange(self._parts, "".join(answer))


class ChatSession:
    """A Gemini chat seeded with a conversation's prior turns."""

    def __init__(self, llm: Any, history: Optional[Sequence[Any]] = None) -> None:
        self.llm = llm
        self.history: List[Dict[str, Any]] = normalize_history(history)

    def send_streaming(self, parts: Sequence[Part]) -> FragmentStream:
        """Send a new user turn; returns the lazy fragment sequence of the answer."""
        if not parts:
            raise ValueError("At least one part is required")
        return FragmentStream(self, list(parts))

    def build_messages(self, parts: List[Part]) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        for entry in self.history:
            text = entry["parts"][0]["text"]
            # Gemini rejects empty parts, so the placeholder seed never goes on the wire
            if not text:
                continue
            if entry["role"] in _MODEL_ROLES:
                messages.append(AIMessage(content=text))
            else:
                messages.append(HumanMessage(content=text))

        if len(parts) == 1 and isinstance(parts[0], str):
            messages.append(HumanMessage(content=parts[0]))
        else:
            messages.append(HumanMessage(content=[to_content_block(p) for p in parts]))
        return messages

    def record_exchange(self, parts: List[Part], answer: str) -> None:
        text = next((p for p in reversed(parts) if isinstance(p, str)), "")
        self.history.append({"role": "user", "parts": [{"text": text}]})
        self.history.append({"role": "model", "parts": [{"text": answer}]})


class LLMClient:
    """Unified LLM client interface (Gemini-only)."""

    def __init__(self, provider: str = "gemini", model: Optional[str] = None, llm: Any = None) -> None:
        """
        Initialize Gemini client.

        Args:
            provider: Must be "gemini" (or "google").
            model: Gemini model name (default: "gemini-2.0-flash").
            llm: Pre-built chat model, mainly for tests; skips API key lookup.
        """
        provider = provider.lower()
        if provider not in {"gemini", "google"}:
            raise ConfigurationError(
                f"Only Gemini is supported. Got provider={provider!r}."
            )

        self.model = model or DEFAULT_MODEL
        if llm is not None:
            self._llm = llm
            return

        api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise ConfigurationError("GOOGLE_API_KEY or GEMINI_API_KEY not found in environment")

        self._llm = ChatGoogleGenerativeAI(
            model=self.model,
            google_api_key=api_key,
        )

    # ------------------------------------------------------------------
    # Chat sessions
    # ------------------------------------------------------------------
    def open_session(self, history: Optional[Sequence[Any]] = None) -> ChatSession:
        """Open a chat session whose history is the conversation's prior turns."""
        session = ChatSession(self._llm, history)
        logger.debug("Opened chat session with %d history entries", len(session.history))
        return session

    # ------------------------------------------------------------------
    # Speech transcription
    # ------------------------------------------------------------------
    async def transcribe(self, audio: bytes, language: str = SPEECH_LANGUAGE, mime_type: str = "audio/wav") -> str:
        """Return a whitespace-trimmed transcript of a recorded utterance."""
        prompt = (
            f"Transcribe this {language} speech verbatim. "
            "Reply with the transcript only, or nothing if there is no speech."
        )
        message = HumanMessage(
            content=[
                {"type": "text", "text": prompt},
                {"type": "media", "mime_type": mime_type, "data": base64.b64encode(audio).decode("ascii")},
            ]
        )
        resp = await self._llm.ainvoke([message])
        return chunk_text(resp).strip()
