"""Abstract transport interfaces used by the chat session."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from deal_assistant.transport.models import ChatReply, ChatRequest, HistoryReply, StreamEvent

EventSink = Callable[[StreamEvent], None]
FailureCallback = Callable[[BaseException], None]


class StreamHandle(ABC):
    """Cancelable handle for one open event stream."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivery. Idempotent and safe after the stream finished."""
        ...

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    async def wait(self) -> None:
        """Return once the handle will deliver nothing further."""
        ...


class StreamTransport(ABC):
    """Opens server-pushed event streams.

    Implementations call *on_event* once per decoded event, in server order,
    and *on_failure* exactly once on a transport-level error. Neither is
    called after ``close()`` or after a terminal event was delivered.
    """

    @abstractmethod
    def open(
        self,
        request: ChatRequest,
        on_event: EventSink,
        on_failure: FailureCallback,
    ) -> StreamHandle:
        ...


class ChatTransport(ABC):
    """Request/response chat endpoint."""

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatReply:
        ...


class HistoryTransport(ABC):
    """Fetches stored conversations."""

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> HistoryReply:
        ...
