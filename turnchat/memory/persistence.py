"""
Persistence Gateway

Sends a finished turn to the chat store:

    PUT {base_url}/api/chats/{conversation_id}
    {"question"?: str, "answer": str, "img"?: str}

Cookies held by the shared httpx client are sent with every request, so a
logged-in session carries over. There is no automatic retry; a failed save
is surfaced to the caller and the user resubmits.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import PersistenceError
from ..schema.core_schema import PendingTurn
from ..schema.schema_config import DEFAULT_API_BASE_URL, PERSIST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


def open_http_client(
    base_url: str = DEFAULT_API_BASE_URL,
    timeout: float = PERSIST_TIMEOUT_SECONDS,
    cookies: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Shared async client for the chat store (persistence + conversation reads)."""
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(timeout, connect=10.0),
        cookies=cookies,
        headers={"Content-Type": "application/json"},
        transport=transport,
    )


def chat_path(conversation_id: str) -> str:
    return f"/api/chats/{conversation_id}"


class PersistenceGateway:
    """Writes finished turns to the remote chat store."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def save(self, conversation_id: str, turn: PendingTurn) -> Dict[str, Any]:
        """
        Persist one turn for the given conversation.

        Returns:
            The decoded response body (the updated record); its fields are not interpreted.

        Raises:
            PersistenceError: transport failure, timeout or a non-2xx response.
        """
        body = turn.to_body()
        try:
            resp = await self.client.put(chat_path(conversation_id), json=body)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PersistenceError(
                f"Chat store rejected update for {conversation_id}",
                details={"status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise PersistenceError(
                f"Could not reach chat store: {e}",
                details={"cause": type(e).__name__},
            ) from e

        logger.info(
            "Saved turn for conversation %s (answer %d chars, image=%s)",
            conversation_id,
            len(turn.answer),
            bool(turn.img),
        )
        try:
            return resp.json()
        except ValueError:
            return {}
