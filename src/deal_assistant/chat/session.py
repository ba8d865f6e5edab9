"""Chat session state machine: Idle / Loading / Streaming / Error."""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Callable, Optional

from deal_assistant.chat.models import Message
from deal_assistant.chat.store import ConversationStore
from deal_assistant.core.errors import (
    AssistantError,
    ChatRequestFailed,
    HistoryLoadFailed,
    ServerStreamError,
    StreamDisconnected,
)
from deal_assistant.core.types import ChatState, EventType, Record
from deal_assistant.log import get_logger
from deal_assistant.transport.base import (
    ChatTransport,
    HistoryTransport,
    StreamHandle,
    StreamTransport,
)
from deal_assistant.transport.models import ChatReply, ChatRequest, HistoryMessage, StreamEvent

logger = get_logger(__name__)

ErrorCallback = Callable[[AssistantError], None]

CONNECTION_LOST = "Connection lost. Please try again."
REQUEST_FAILED = "Failed to get response"
LOAD_FAILED = "Failed to load conversation"
STREAM_FAILED = "Something went wrong."


def _history_to_message(record: HistoryMessage) -> Message:
    message = Message(
        id=record.id,
        role=record.role,
        content=record.content,
        metadata=record.metadata,
    )
    if record.created_at is not None:
        message.created_at = record.created_at
    return message


class ChatSession:
    """Drives one assistant conversation.

    At most one request is outstanding at a time: ``send`` refuses to start
    while Loading or Streaming. Every started request is tagged with a
    generation number, and callbacks from an older generation never touch
    the store, so a cancelled or cleared request cannot leak into the next one.
    """

    def __init__(
        self,
        *,
        stream_transport: StreamTransport | None = None,
        chat_transport: ChatTransport | None = None,
        history_transport: HistoryTransport | None = None,
        streaming: bool = True,
        conversation_id: str | None = None,
        context: dict[str, str] | None = None,
        on_error: ErrorCallback | None = None,
    ):
        if streaming and stream_transport is None:
            raise ValueError("streaming session requires a stream_transport")
        if not streaming and chat_transport is None:
            raise ValueError("non-streaming session requires a chat_transport")

        self._stream_transport = stream_transport
        self._chat_transport = chat_transport
        self._history_transport = history_transport
        self._streaming = streaming
        self._context = dict(context or {})
        self._on_error = on_error

        self._store = ConversationStore()
        self._state = ChatState.IDLE
        self._error: Optional[str] = None
        self._conversation_id = conversation_id

        self._generation = 0
        self._handle: Optional[StreamHandle] = None
        self._task: Optional[asyncio.Task] = None
        # Requests left running by clear(); released on close()
        self._detached_handles: dict[int, StreamHandle] = {}
        self._detached_tasks: set[asyncio.Task] = set()

    # -- observable state -------------------------------------------------

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    @property
    def messages(self) -> list[Message]:
        return self._store.messages

    @property
    def deals(self) -> list[Record]:
        return self._store.deals

    @property
    def coupons(self) -> list[Record]:
        return self._store.coupons

    @property
    def is_loading(self) -> bool:
        return self._state == ChatState.LOADING

    @property
    def is_streaming(self) -> bool:
        return self._state == ChatState.STREAMING

    @property
    def busy(self) -> bool:
        return self._state in (ChatState.LOADING, ChatState.STREAMING)

    def set_conversation_id(self, conversation_id: str | None) -> None:
        self._conversation_id = conversation_id

    # -- public contract --------------------------------------------------

    def send(self, content: str) -> bool:
        """Start a request for *content*. Returns False when nothing was sent."""
        text = (content or "").strip()
        if not text:
            return False
        if self.busy:
            logger.debug("send_ignored", state=str(self._state))
            return False

        self._generation += 1
        self._store.append_user(text)
        self._store.reset_collections()
        request = ChatRequest(
            message=text,
            conversation_id=self._conversation_id,
            context=dict(self._context),
        )
        if self._streaming:
            self._start_stream(request)
        else:
            self._start_request(request)
        return True

    def cancel(self) -> None:
        """Abort the in-flight request, if any, and return to Idle immediately."""
        self._generation += 1
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._store.finalize()
        self._set_state(ChatState.IDLE)

    def clear(self) -> None:
        """Forget the conversation. An in-flight request keeps running detached."""
        if self._handle is not None:
            self._detached_handles[self._generation] = self._handle
            self._handle = None
        if self._task is not None:
            self._detached_tasks.add(self._task)
            self._task.add_done_callback(self._detached_tasks.discard)
            self._task = None
        self._generation += 1

        self._store.clear()
        self._conversation_id = None
        self._set_state(ChatState.IDLE)

    def retry(self) -> bool:
        """Re-send the most recent user message, dropping a trailing assistant reply."""
        if len(self._store) == 0 or self.busy:
            return False
        last_user = self._store.last_user_message()
        if last_user is None:
            return False

        dropped = self._store.drop_trailing_assistant()
        logger.info("retry", dropped_message_id=dropped.id if dropped else None)
        return self.send(last_user.content)

    async def load_conversation(self, conversation_id: str) -> bool:
        """Replace the conversation with one fetched from history."""
        if self._history_transport is None:
            raise RuntimeError("load_conversation requires a history_transport")
        if self.busy:
            return False

        self._generation += 1
        generation = self._generation
        self._set_state(ChatState.LOADING)
        task = asyncio.ensure_future(self._history_transport.get_conversation(conversation_id))
        self._task = task

        try:
            reply = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.info("history_load_cancelled", conversation_id=conversation_id)
                return False
            # the caller was cancelled mid-load; leave Loading before propagating
            task.cancel()
            self._task = None
            self._generation += 1
            self._set_state(ChatState.IDLE)
            raise
        except Exception as e:
            if generation == self._generation:
                self._task = None
                self._fail(HistoryLoadFailed(str(e) or LOAD_FAILED), cause=e)
            return False

        if generation != self._generation:
            return False
        self._task = None
        if not reply.success:
            self._fail(HistoryLoadFailed(reply.error or LOAD_FAILED))
            return False

        if reply.messages is not None:
            self._store.replace(_history_to_message(m) for m in reply.messages)
            self._conversation_id = conversation_id
        self._set_state(ChatState.IDLE)
        logger.info(
            "conversation_loaded",
            conversation_id=conversation_id,
            message_count=len(self._store),
        )
        return True

    async def wait(self) -> None:
        """Wait for the in-flight request, if any, to settle."""
        if self._handle is not None:
            await self._handle.wait()
        elif self._task is not None:
            await asyncio.wait([self._task])

    async def close(self) -> None:
        """Release every stream and task this session owns."""
        handles = list(self._detached_handles.values())
        tasks = list(self._detached_tasks)
        if self._handle is not None:
            handles.append(self._handle)
        if self._task is not None:
            tasks.append(self._task)

        self.cancel()
        for handle in handles:
            handle.close()
        for task in tasks:
            task.cancel()
        self._detached_handles.clear()

        for handle in handles:
            await handle.wait()
        if tasks:
            await asyncio.wait(tasks)

    async def __aenter__(self) -> ChatSession:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -- streaming transport ----------------------------------------------

    def _start_stream(self, request: ChatRequest) -> None:
        self._store.begin_assistant()
        self._set_state(ChatState.STREAMING)
        generation = self._generation
        self._handle = self._stream_transport.open(
            request,
            on_event=partial(self._on_stream_event, generation),
            on_failure=partial(self._on_stream_failure, generation),
        )
        logger.info("stream_started", conversation_id=self._conversation_id)

    def _on_stream_event(self, generation: int, event: StreamEvent) -> None:
        if generation != self._generation:
            if event.terminal:
                self._detached_handles.pop(generation, None)
            logger.debug("stale_stream_event", type=str(event.type))
            return

        if event.conversation_id and self._conversation_id is None:
            self._conversation_id = event.conversation_id
        self._store.apply(event)

        if event.type == EventType.DONE:
            self._handle = None
            self._set_state(ChatState.IDLE)
            logger.info("stream_done", conversation_id=self._conversation_id)
        elif event.type == EventType.ERROR:
            self._handle = None
            self._fail(ServerStreamError(event.error or STREAM_FAILED))

    def _on_stream_failure(self, generation: int, exc: BaseException) -> None:
        if generation != self._generation:
            self._detached_handles.pop(generation, None)
            return
        self._handle = None
        self._store.finalize()
        self._fail(StreamDisconnected(CONNECTION_LOST), cause=exc)

    # -- non-streaming transport ------------------------------------------

    def _start_request(self, request: ChatRequest) -> None:
        self._set_state(ChatState.LOADING)
        self._task = asyncio.create_task(self._run_request(self._generation, request))

    async def _run_request(self, generation: int, request: ChatRequest) -> None:
        try:
            reply = await self._chat_transport.chat(request)
        except Exception as e:
            if generation == self._generation:
                self._task = None
                self._fail(ChatRequestFailed(str(e) or REQUEST_FAILED), cause=e)
            return

        if generation != self._generation:
            logger.debug("stale_reply_dropped", request_id=reply.request_id)
            return
        self._task = None
        self._apply_reply(reply)

    def _apply_reply(self, reply: ChatReply) -> None:
        if not reply.success:
            self._fail(ChatRequestFailed(reply.error or REQUEST_FAILED))
            return
        if reply.conversation_id and self._conversation_id is None:
            self._conversation_id = reply.conversation_id
        self._store.append_reply(
            reply.content or "",
            deals=reply.deals,
            coupons=reply.coupons,
            message_id=reply.request_id,
            cached=reply.cached,
        )
        self._set_state(ChatState.IDLE)
        logger.info("reply_received", request_id=reply.request_id, cached=reply.cached)

    # -- state ------------------------------------------------------------

    def _set_state(self, state: ChatState) -> None:
        if state != ChatState.ERROR:
            self._error = None
        if state != self._state:
            logger.debug("session_state", previous=str(self._state), state=str(state))
            self._state = state

    def _fail(self, error: AssistantError, cause: BaseException | None = None) -> None:
        if cause is not None:
            error.__cause__ = cause
        self._error = str(error)
        self._set_state(ChatState.ERROR)
        logger.warning("session_error", error=self._error, cause=str(cause) if cause else None)
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception as e:
                logger.error("error_callback_failed", error=str(e))
