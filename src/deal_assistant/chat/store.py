"""Ordered message list plus the deals/coupons of the latest reply."""

from __future__ import annotations

from typing import Iterable, Optional

from deal_assistant.chat.models import Message, new_message_id
from deal_assistant.core.types import EventType, MessageRole, Record
from deal_assistant.log import get_logger
from deal_assistant.transport.models import StreamEvent

logger = get_logger(__name__)


class ConversationStore:
    """Append-only conversation with a single mutable streaming tail.

    Only the message at ``_streaming_index`` accepts deltas, and that index
    always points at the last message.
    """

    def __init__(self) -> None:
        self._messages: list[Message] = []
        self._streaming_index: Optional[int] = None
        self.deals: list[Record] = []
        self.coupons: list[Record] = []

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def streaming_message(self) -> Optional[Message]:
        if self._streaming_index is None:
            return None
        return self._messages[self._streaming_index]

    def __len__(self) -> int:
        return len(self._messages)

    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def last_user_message(self) -> Optional[Message]:
        for message in reversed(self._messages):
            if message.role == MessageRole.USER:
                return message
        return None

    def append_user(self, content: str) -> Message:
        self.finalize()
        message = Message(id=new_message_id("user"), role=MessageRole.USER, content=content)
        self._messages.append(message)
        return message

    def begin_assistant(self) -> Message:
        """Append the empty placeholder that subsequent deltas fill in."""
        self.finalize()
        message = Message(
            id=new_message_id("assistant"),
            role=MessageRole.ASSISTANT,
            is_streaming=True,
        )
        self._messages.append(message)
        self._streaming_index = len(self._messages) - 1
        return message

    def append_reply(
        self,
        content: str,
        deals: Optional[list[Record]] = None,
        coupons: Optional[list[Record]] = None,
        message_id: Optional[str] = None,
        cached: Optional[bool] = None,
    ) -> Message:
        """Append a complete assistant message from a non-streaming reply."""
        self.finalize()
        message = Message(
            id=message_id or new_message_id("assistant"),
            role=MessageRole.ASSISTANT,
            content=content,
            deals=list(deals) if deals is not None else None,
            coupons=list(coupons) if coupons is not None else None,
            cached=cached,
        )
        self._messages.append(message)
        if deals:
            self.deals = list(deals)
        if coupons:
            self.coupons = list(coupons)
        return message

    def apply(self, event: StreamEvent) -> None:
        """Apply one stream event to the streaming tail."""
        if event.type == EventType.START:
            return

        message = self.streaming_message
        if message is None:
            logger.debug("stream_event_dropped", type=str(event.type), reason="no_streaming_message")
            return

        match event.type:
            case EventType.TEXT:
                message.content += event.content
            case EventType.THINKING:
                message.thinking = (message.thinking or "") + event.content
            case EventType.DEALS:
                message.deals = list(event.deals)
                self.deals = list(event.deals)
            case EventType.COUPONS:
                message.coupons = list(event.coupons)
                self.coupons = list(event.coupons)
            case EventType.DONE | EventType.ERROR:
                self.finalize()

    def finalize(self) -> Optional[Message]:
        """Stop treating the tail as streaming. Content is left untouched."""
        message = self.streaming_message
        if message is not None:
            message.is_streaming = False
            self._streaming_index = None
        return message

    def reset_collections(self) -> None:
        self.deals = []
        self.coupons = []

    def drop_trailing_assistant(self) -> Optional[Message]:
        last = self.last()
        if last is None or last.role != MessageRole.ASSISTANT:
            return None
        self.finalize()
        return self._messages.pop()

    def replace(self, messages: Iterable[Message]) -> None:
        self._messages = list(messages)
        self._streaming_index = None

    def clear(self) -> None:
        self._messages = []
        self._streaming_index = None
        self.reset_collections()
