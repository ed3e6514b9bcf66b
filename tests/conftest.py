"""
Pytest configuration and fixtures for the turn orchestrator.
Only external services are faked: the Gemini chat model and the chat store.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from turnchat.chatbot.llm_client import LLMClient
from turnchat.chatbot.turn_accumulator import TurnAccumulator, TurnView
from turnchat.memory.conversation_cache import ConversationCache
from turnchat.memory.persistence import PersistenceGateway, open_http_client


class FakeChunk:
    def __init__(self, content: Any) -> None:
        self.content = content


class FakeChatModel:
    """Stands in for ChatGoogleGenerativeAI: streams scripted fragments."""

    def __init__(
        self,
        fragments: Optional[List[str]] = None,
        fail_after: Optional[int] = None,
        gate: Optional[asyncio.Event] = None,
        transcript: str = "",
    ) -> None:
        self.fragments = list(fragments or [])
        self.fail_after = fail_after
        self.gate = gate
        self.transcript = transcript
        self.calls: List[List[Any]] = []

    async def astream(self, messages):
        self.calls.append(list(messages))
        if self.gate is not None:
            await self.gate.wait()
        for i, fragment in enumerate(self.fragments):
            if self.fail_after is not None and i >= self.fail_after:
                raise RuntimeError("model exploded")
            yield FakeChunk(fragment)
        if self.fail_after is not None and self.fail_after >= len(self.fragments):
            raise RuntimeError("model exploded")

    async def ainvoke(self, messages):
        self.calls.append(list(messages))
        return FakeChunk(self.transcript)


class FakeChatStore:
    """In-memory chat store behind an httpx.MockTransport."""

    def __init__(self, conversations: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.conversations = {
            chat_id: {"_id": chat_id, "history": list(history)}
            for chat_id, history in (conversations or {}).items()
        }
        self.requests: List[httpx.Request] = []
        self.put_bodies: List[Dict[str, Any]] = []
        self.put_status = 200
        self.get_status = 200
        # when set, GET answers 200 with this body instead of the stored record
        self.get_body: Any = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        chat_id = request.url.path.rsplit("/", 1)[-1]
        if chat_id not in self.conversations:
            return httpx.Response(404, json={"error": "not found"})
        record = self.conversations[chat_id]

        if request.method == "GET":
            if self.get_status != 200:
                return httpx.Response(self.get_status, json={"error": "boom"})
            if self.get_body is not None:
                return httpx.Response(200, json=self.get_body)
            return httpx.Response(200, json=record)

        if request.method == "PUT":
            if self.put_status != 200:
                return httpx.Response(self.put_status, json={"error": "boom"})
            body = json.loads(request.content)
            self.put_bodies.append(body)
            if body.get("question"):
                entry = {"role": "user", "parts": [{"text": body["question"]}]}
                if body.get("img"):
                    entry["img"] = body["img"]
                record["history"].append(entry)
            record["history"].append({"role": "model", "parts": [{"text": body["answer"]}]})
            return httpx.Response(200, json=record)

        return httpx.Response(405)

    @property
    def puts(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "PUT"]


class RecordingView(TurnView):
    """Records everything the orchestrator shows."""

    def __init__(self) -> None:
        self.events: List[tuple] = []
        self.states: List[Any] = []
        self.renders: List[tuple] = []
        self.alerts: List[str] = []
        self.saved: List[tuple] = []
        self.cleared = 0

    def render(self, turn) -> None:
        self.renders.append((turn.question_text, turn.answer_buffer))
        self.events.append(("render", turn.answer_buffer))

    def alert(self, message: str) -> None:
        self.alerts.append(message)
        self.events.append(("alert", message))

    def clear_input(self) -> None:
        self.cleared += 1
        self.events.append(("clear_input",))

    def state_changed(self, state) -> None:
        self.states.append(state)
        self.events.append(("state", state))

    def persisted(self, conversation_id, turn) -> None:
        self.saved.append((conversation_id, turn.to_body()))
        self.events.append(("persisted", conversation_id))


@pytest.fixture
def chat_store():
    return FakeChatStore(
        {
            "abc": [
                {"role": "user", "parts": [{"text": "Earlier question"}]},
                {"role": "model", "parts": [{"text": "Earlier answer"}]},
            ],
            "fresh": [{"role": "user", "parts": [{"text": "Tell me a joke"}]}],
            "empty": [],
        }
    )


@pytest.fixture
def http_client(chat_store):
    return open_http_client("http://store.test", transport=httpx.MockTransport(chat_store.handler))


@pytest.fixture
def build_accumulator(http_client):
    """Factory: accumulator wired to a fake model and the fake store."""

    def _build(model: FakeChatModel, cache: Optional[ConversationCache] = None, **kwargs):
        view = kwargs.pop("view", None) or RecordingView()
        accumulator = TurnAccumulator(
            LLMClient(llm=model),
            PersistenceGateway(http_client),
            cache or ConversationCache(http_client),
            view=view,
            **kwargs,
        )
        return accumulator, view

    return _build
