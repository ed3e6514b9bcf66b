"""
Conversation Cache

Read-through cache of conversations keyed by ``("chat", conversation_id)``.
Invalidating a key drops it and refetches before returning, so whoever
awaited the invalidation observes the freshly saved turn.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

import httpx
import pydantic

from ..errors import PersistenceError
from ..schema.core_schema import Conversation
from .persistence import chat_path

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]
Listener = Callable[[Conversation], Union[None, Awaitable[None]]]


def chat_key(conversation_id: str) -> CacheKey:
    return ("chat", conversation_id)


class ReplayRegistry:
    """Conversation ids whose opening message has already been auto-submitted."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def seen(self, conversation_id: str) -> bool:
        return conversation_id in self._seen

    def mark(self, conversation_id: str) -> None:
        self._seen.add(conversation_id)

    def clear(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)


class ConversationCache:
    """Caches conversations fetched from the chat store."""

    def __init__(self, client: httpx.AsyncClient, replay_registry: Optional[ReplayRegistry] = None) -> None:
        self.client = client
        self.replay_registry = replay_registry or ReplayRegistry()
        self._entries: Dict[CacheKey, Conversation] = {}
        self._listeners: Dict[CacheKey, List[Listener]] = {}

    async def get(self, conversation_id: str) -> Conversation:
        """Return the cached conversation, fetching it on a miss."""
        key = chat_key(conversation_id)
        if key not in self._entries:
            self._entries[key] = await self._fetch(conversation_id)
        return self._entries[key]

    def peek(self, conversation_id: str) -> Optional[Conversation]:
        return self._entries.get(chat_key(conversation_id))

    def subscribe(self, conversation_id: str, listener: Listener) -> Callable[[], None]:
        """Register a callback run after every refetch; returns an unsubscribe function."""
        listeners = self._listeners.setdefault(chat_key(conversation_id), [])
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    async def invalidate(self, key: CacheKey) -> Conversation:
        """Drop ``key`` and refetch it; settles once listeners have seen the new data."""
        kind, conversation_id = key
        if kind != "chat":
            raise ValueError(f"Unknown cache key kind: {kind!r}")

        self._entries.pop(key, None)
        conversation = await self._fetch(conversation_id)
        self._entries[key] = conversation

        for listener in list(self._listeners.get(key, [])):
            result = listener(conversation)
            if inspect.isawaitable(result):
                await result
        return conversation

    def reload_list(self) -> None:
        """Forget every cached conversation and every replay record."""
        self._entries.clear()
        self.replay_registry.clear()
        logger.debug("Conversation list reloaded; cache and replay records cleared")

    async def _fetch(self, conversation_id: str) -> Conversation:
        try:
            resp = await self.client.get(chat_path(conversation_id))
            resp.raise_for_status()
            payload: Any = resp.json()
        except httpx.HTTPStatusError as e:
            raise PersistenceError(
                f"Could not load conversation {conversation_id}",
                details={"status_code": e.response.status_code},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise PersistenceError(
                f"Could not load conversation {conversation_id}: {e}",
                details={"cause": type(e).__name__},
            ) from e

        if not isinstance(payload, dict):
            raise PersistenceError(
                f"Conversation {conversation_id} is not a JSON object",
                details={"cause": type(payload).__name__},
            )
        payload.setdefault("_id", conversation_id)
        try:
            return Conversation.model_validate(payload)
        except pydantic.ValidationError as e:
            raise PersistenceError(
                f"Malformed conversation {conversation_id}",
                details={"cause": "ValidationError", "errors": e.error_count()},
            ) from e
