"""Request/response assistant API client built on httpx."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from deal_assistant.log import get_logger
from deal_assistant.transport.base import ChatTransport, HistoryTransport
from deal_assistant.transport.models import ChatReply, ChatRequest, HistoryReply

logger = get_logger(__name__)

FEEDBACK_RATINGS = ("positive", "negative")


def build_http_client(
    base_url: str,
    access_token: Optional[str] = None,
    timeout: float = 60.0,
) -> httpx.AsyncClient:
    """Create the shared client used by every transport."""
    headers = {"Content-Type": "application/json"}
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"
    return httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)


class HttpAssistantClient(ChatTransport, HistoryTransport):
    """Non-streaming chat, conversation history and feedback endpoints."""

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def chat(self, request: ChatRequest) -> ChatReply:
        """POST a chat turn. Error statuses still carry a JSON reply body."""
        logger.debug("chat_request", message_length=len(request.message))
        response = await self._client.post("/ai/chat", json=request.to_json())
        reply = ChatReply.model_validate(self._json(response))
        logger.debug(
            "chat_response",
            status=response.status_code,
            success=reply.success,
            cached=reply.cached,
            request_id=reply.request_id,
        )
        return reply

    async def get_conversation(self, conversation_id: str) -> HistoryReply:
        response = await self._client.get(f"/ai/conversations/{conversation_id}")
        reply = HistoryReply.model_validate(self._json(response))
        logger.debug(
            "history_response",
            conversation_id=conversation_id,
            status=response.status_code,
            count=len(reply.messages or []),
        )
        return reply

    async def submit_feedback(
        self, message_id: str, rating: str, comment: str | None = None
    ) -> bool:
        """Rate an assistant message. Returns the server's success flag."""
        if rating not in FEEDBACK_RATINGS:
            raise ValueError(f"rating must be one of {FEEDBACK_RATINGS}, got {rating!r}")
        body: dict[str, Any] = {"messageId": message_id, "rating": rating}
        if comment:
            body["comment"] = comment
        response = await self._client.post("/ai/feedback", json=body)
        return bool(self._json(response).get("success", False))

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body, raising for anything else."""
        try:
            data = response.json()
        except ValueError:
            response.raise_for_status()
            raise httpx.DecodingError(
                f"Expected JSON from {response.request.url}", request=response.request
            )
        if not isinstance(data, dict):
            raise httpx.DecodingError(
                f"Expected a JSON object from {response.request.url}", request=response.request
            )
        return data
