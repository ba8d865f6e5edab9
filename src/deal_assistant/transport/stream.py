"""Server-sent event stream consumer built on httpx."""

from __future__ import annotations

import asyncio
import json
from typing import Optional, Union

import httpx
from pydantic import ValidationError

from deal_assistant.core.errors import StreamDisconnected
from deal_assistant.log import get_logger
from deal_assistant.transport.base import EventSink, FailureCallback, StreamHandle, StreamTransport
from deal_assistant.transport.models import ChatRequest, StreamEvent

logger = get_logger(__name__)

_QueueItem = Union[StreamEvent, BaseException]


class SSEDecoder:
    """Incremental decoder for the text/event-stream wire format.

    Feed it one line at a time (without the line terminator); it returns the
    joined ``data`` payload whenever a blank line completes a frame.
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> Optional[str]:
        if not line:
            return self.flush()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            self._data.append(value)
        # event/id/retry fields carry nothing the client uses
        return None

    def flush(self) -> Optional[str]:
        if not self._data:
            return None
        data = "\n".join(self._data)
        self._data = []
        return data


def decode_event(data: str) -> Optional[StreamEvent]:
    """Parse one frame payload, or return None if it is not a usable event."""
    try:
        return StreamEvent.model_validate(json.loads(data))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("stream_frame_dropped", error=str(e), data=data[:200])
        return None


class SSEStreamHandle(StreamHandle):
    """One open stream: a reader task feeds a bounded queue, a driver task drains it."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        path: str,
        request: ChatRequest,
        on_event: EventSink,
        on_failure: FailureCallback,
        queue_size: int = 64,
    ):
        self._client = client
        self._path = path
        self._request = request
        self._on_event = on_event
        self._on_failure = on_failure
        self._queue: asyncio.Queue[_QueueItem] = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self._reader = asyncio.create_task(self._read())
        self._driver = asyncio.create_task(self._drive())

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._reader.cancel()
        self._driver.cancel()
        logger.debug("stream_closed", path=self._path)

    async def wait(self) -> None:
        await asyncio.wait([self._reader, self._driver])

    async def _read(self) -> None:
        params = {"message": self._request.message}
        if self._request.conversation_id:
            params["conversationId"] = self._request.conversation_id

        failure: BaseException
        try:
            async with self._client.stream(
                "GET",
                self._path,
                params=params,
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            ) as response:
                response.raise_for_status()
                logger.debug("stream_opened", path=self._path, status=response.status_code)

                decoder = SSEDecoder()
                async for line in response.aiter_lines():
                    if await self._enqueue(decoder.feed(line)):
                        return
                if await self._enqueue(decoder.flush()):
                    return
            failure = StreamDisconnected("stream ended before completion")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("stream_transport_error", path=self._path, error=str(e))
            failure = e

        await self._queue.put(failure)

    async def _enqueue(self, data: Optional[str]) -> bool:
        """Queue a decoded frame; return True once a terminal event is queued."""
        if data is None:
            return False
        event = decode_event(data)
        if event is None:
            return False
        await self._queue.put(event)
        return event.terminal

    async def _drive(self) -> None:
        while True:
            item = await self._queue.get()
            if self._closed:
                return
            if isinstance(item, BaseException):
                self._closed = True
                self._on_failure(item)
                return
            if item.terminal:
                # the reader stops by itself after queueing a terminal event
                self._closed = True
            try:
                self._on_event(item)
            except Exception as e:
                logger.error("stream_sink_failed", path=self._path, type=str(item.type), error=str(e))
                if not item.terminal:
                    self._closed = True
                    self._reader.cancel()
                    self._on_failure(e)
                return
            if item.terminal:
                return


class SSEStreamTransport(StreamTransport):
    """Streams chat replies from ``GET <path>`` on the shared API client."""

    def __init__(self, client: httpx.AsyncClient, path: str = "/ai/chat", queue_size: int = 64):
        self._client = client
        self._path = path
        self._queue_size = queue_size

    def open(
        self,
        request: ChatRequest,
        on_event: EventSink,
        on_failure: FailureCallback,
    ) -> StreamHandle:
        return SSEStreamHandle(
            self._client,
            self._path,
            request,
            on_event,
            on_failure,
            queue_size=self._queue_size,
        )
