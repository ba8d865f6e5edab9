"""Application orchestrator - wires transports, quota guard and session."""

from __future__ import annotations

from typing import Optional

from deal_assistant.chat.quota import QuotaGuard
from deal_assistant.chat.session import ChatSession, ErrorCallback
from deal_assistant.config import AppConfig
from deal_assistant.log import get_logger
from deal_assistant.storage.kv import JsonFileKeyValueStore, KeyValueStore
from deal_assistant.transport.base import ChatTransport, HistoryTransport, StreamTransport
from deal_assistant.transport.http import HttpAssistantClient, build_http_client
from deal_assistant.transport.stream import SSEStreamTransport

logger = get_logger(__name__)


class AssistantApp:
    """Top-level assistant surface: caller -> quota guard -> session.

    Transports default to the HTTP/SSE implementations on one shared httpx
    client; any of them can be swapped for tests or other backends.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        store: Optional[KeyValueStore] = None,
        stream_transport: Optional[StreamTransport] = None,
        chat_transport: Optional[ChatTransport] = None,
        history_transport: Optional[HistoryTransport] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.config = config
        self.http = build_http_client(
            config.api.base_url,
            access_token=config.api.access_token,
            timeout=config.api.timeout,
        )
        self.api = HttpAssistantClient(self.http)
        self.quota = QuotaGuard(
            store or JsonFileKeyValueStore(config.quota.storage_path),
            daily_limit=config.quota.daily_limit,
            key=config.quota.key,
        )
        self.session = ChatSession(
            stream_transport=stream_transport
            or SSEStreamTransport(self.http, queue_size=config.api.stream_queue_size),
            chat_transport=chat_transport or self.api,
            history_transport=history_transport or self.api,
            streaming=config.chat.streaming,
            conversation_id=config.chat.conversation_id,
            context=config.chat.context,
            on_error=on_error,
        )

    @property
    def authenticated(self) -> bool:
        return bool(self.config.api.access_token)

    def send(self, content: str) -> bool:
        """Send through the guest quota. Returns False when blocked or ignored."""
        if not self._quota_allows():
            return False
        started = self.session.send(content)
        if started and not self.authenticated:
            self.quota.consume()
        return started

    def retry(self) -> bool:
        if not self._quota_allows():
            return False
        started = self.session.retry()
        if started and not self.authenticated:
            self.quota.consume()
        return started

    async def submit_feedback(self, message_id: str, rating: str, comment: str | None = None) -> bool:
        ok = await self.api.submit_feedback(message_id, rating, comment)
        logger.info("feedback_submitted", message_id=message_id, rating=rating, success=ok)
        return ok

    async def stop(self) -> None:
        """Release the session's streams and close the HTTP client."""
        try:
            await self.session.close()
        finally:
            await self.http.aclose()
            logger.info("assistant_stopped")

    def _quota_allows(self) -> bool:
        if self.authenticated:
            return True
        if self.quota.check():
            return True
        logger.info("send_blocked_by_quota", remaining=self.quota.remaining)
        return False
