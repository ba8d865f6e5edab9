"""
Tests for the SSE stream consumer over httpx.MockTransport.
"""

import asyncio
import json

import httpx
import pytest

from deal_assistant.core.errors import StreamDisconnected
from deal_assistant.core.types import EventType
from deal_assistant.transport.models import ChatRequest
from deal_assistant.transport.stream import SSEDecoder, SSEStreamTransport, decode_event


def frame(**payload) -> bytes:
    return f"data: {json.dumps(payload)}\n\n".encode()


class GatedStream(httpx.AsyncByteStream):
    """Yields chunks, pausing at each ``None`` until the gate opens."""

    def __init__(self, chunks, gate: asyncio.Event):
        self._chunks = chunks
        self._gate = gate

    async def __aiter__(self):
        for chunk in self._chunks:
            if chunk is None:
                await self._gate.wait()
                continue
            yield chunk


class Recorder:
    def __init__(self):
        self.events = []
        self.failures = []
        self.first_event = asyncio.Event()

    def on_event(self, event):
        self.events.append(event)
        self.first_event.set()

    def on_failure(self, exc):
        self.failures.append(exc)

    @property
    def types(self):
        return [e.type for e in self.events]


def _transport(handler) -> tuple[SSEStreamTransport, httpx.AsyncClient]:
    client = httpx.AsyncClient(base_url="http://assistant.test/api", transport=httpx.MockTransport(handler))
    return SSEStreamTransport(client, queue_size=4), client


def _sse(body: bytes, status: int = 200) -> httpx.Response:
    return httpx.Response(status, headers={"Content-Type": "text/event-stream"}, content=body)


class TestDecoder:
    """Test SSE frame decoding."""

    def test_multiline_data_and_comments(self):
        decoder = SSEDecoder()

        assert decoder.feed(": keep-alive") is None
        assert decoder.feed("event: message") is None
        assert decoder.feed('data: {"type":') is None
        assert decoder.feed('data: "text", "content": "hi"}') is None
        data = decoder.feed("")

        assert json.loads(data) == {"type": "text", "content": "hi"}
        assert decoder.feed("") is None

    def test_flush_trailing_frame(self):
        decoder = SSEDecoder()
        decoder.feed('data:{"type":"done"}')

        assert decoder.flush() == '{"type":"done"}'

    def test_decode_event_rejects_garbage(self):
        assert decode_event("not json") is None
        assert decode_event('{"type": "mystery"}') is None
        assert decode_event('{"type": "deals", "deals": [{"id": 1}]}').deals == [{"id": 1}]


class TestStreamDelivery:
    """Test ordered delivery and terminal handling."""

    @pytest.mark.asyncio
    async def test_events_in_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["accept"] = request.headers["accept"]
            return _sse(
                frame(type="start")
                + frame(type="thinking", content="hmm")
                + frame(type="text", content="Here ")
                + frame(type="text", content="are deals")
                + frame(type="deals", deals=[{"id": 1}])
                + frame(type="done")
            )

        transport, client = _transport(handler)
        recorder = Recorder()

        handle = transport.open(
            ChatRequest(message="deals please", conversation_id="conv-1"),
            recorder.on_event,
            recorder.on_failure,
        )
        await handle.wait()
        await client.aclose()

        assert recorder.types == [
            EventType.START,
            EventType.THINKING,
            EventType.TEXT,
            EventType.TEXT,
            EventType.DEALS,
            EventType.DONE,
        ]
        assert "".join(e.content for e in recorder.events if e.type == EventType.TEXT) == "Here are deals"
        assert recorder.failures == []
        assert handle.closed is True
        assert seen["url"].path == "/api/ai/chat"
        assert seen["url"].params["message"] == "deals please"
        assert seen["url"].params["conversationId"] == "conv-1"
        assert seen["accept"] == "text/event-stream"

    @pytest.mark.asyncio
    async def test_nothing_after_terminal_event(self):
        transport, client = _transport(
            lambda request: _sse(
                frame(type="text", content="a")
                + frame(type="error", error="overloaded")
                + frame(type="text", content="b")
                + frame(type="done")
            )
        )
        recorder = Recorder()

        handle = transport.open(ChatRequest(message="hi"), recorder.on_event, recorder.on_failure)
        await handle.wait()
        await client.aclose()

        assert recorder.types == [EventType.TEXT, EventType.ERROR]
        assert recorder.events[-1].error == "overloaded"
        assert recorder.failures == []

    @pytest.mark.asyncio
    async def test_bad_frames_are_skipped(self):
        transport, client = _transport(
            lambda request: _sse(
                b"data: {broken\n\n"
                + frame(type="unknown")
                + frame(type="text", content="ok")
                + frame(type="done")
            )
        )
        recorder = Recorder()

        handle = transport.open(ChatRequest(message="hi"), recorder.on_event, recorder.on_failure)
        await handle.wait()
        await client.aclose()

        assert recorder.types == [EventType.TEXT, EventType.DONE]


class TestStreamFailures:
    """Test transport-level failures."""

    @pytest.mark.asyncio
    async def test_connect_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport, client = _transport(handler)
        recorder = Recorder()

        handle = transport.open(ChatRequest(message="hi"), recorder.on_event, recorder.on_failure)
        await handle.wait()
        await client.aclose()

        assert recorder.events == []
        assert len(recorder.failures) == 1
        assert isinstance(recorder.failures[0], httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_error_status(self):
        transport, client = _transport(
            lambda request: httpx.Response(429, json={"success": False, "error": "slow down"})
        )
        recorder = Recorder()

        handle = transport.open(ChatRequest(message="hi"), recorder.on_event, recorder.on_failure)
        await handle.wait()
        await client.aclose()

        assert recorder.events == []
        assert len(recorder.failures) == 1
        assert isinstance(recorder.failures[0], httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_body_ends_without_terminal_event(self):
        transport, client = _transport(lambda request: _sse(frame(type="text", content="partial")))
        recorder = Recorder()

        handle = transport.open(ChatRequest(message="hi"), recorder.on_event, recorder.on_failure)
        await handle.wait()
        await client.aclose()

        assert recorder.types == [EventType.TEXT]
        assert len(recorder.failures) == 1
        assert isinstance(recorder.failures[0], StreamDisconnected)

    @pytest.mark.asyncio
    async def test_sink_error_becomes_failure(self):
        transport, client = _transport(
            lambda request: _sse(frame(type="text", content="a") + frame(type="text", content="b") + frame(type="done"))
        )
        events = []
        failures = []

        def on_event(event):
            events.append(event)
            raise RuntimeError("render failed")

        handle = transport.open(ChatRequest(message="hi"), on_event, failures.append)
        await handle.wait()
        await client.aclose()

        assert [e.content for e in events] == ["a"]
        assert len(failures) == 1
        assert isinstance(failures[0], RuntimeError)
        assert handle.closed is True


class TestClose:
    """Test close() semantics."""

    @pytest.mark.asyncio
    async def test_no_events_after_close(self):
        gate = asyncio.Event()
        chunks = [frame(type="text", content="first"), None, frame(type="text", content="second"), frame(type="done")]
        transport, client = _transport(
            lambda request: httpx.Response(200, stream=GatedStream(chunks, gate))
        )
        recorder = Recorder()

        handle = transport.open(ChatRequest(message="hi"), recorder.on_event, recorder.on_failure)
        await asyncio.wait_for(recorder.first_event.wait(), timeout=5)
        handle.close()
        gate.set()
        await handle.wait()
        await client.aclose()

        assert [e.content for e in recorder.events] == ["first"]
        assert recorder.failures == []

    @pytest.mark.asyncio
    async def test_close_from_inside_sink(self):
        transport, client = _transport(
            lambda request: _sse(frame(type="text", content="a") + frame(type="text", content="b") + frame(type="done"))
        )
        events = []
        holder = {}

        def on_event(event):
            events.append(event)
            holder["handle"].close()

        holder["handle"] = transport.open(ChatRequest(message="hi"), on_event, lambda exc: None)
        await holder["handle"].wait()
        await client.aclose()

        assert [e.content for e in events] == ["a"]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        transport, client = _transport(lambda request: _sse(frame(type="done")))
        recorder = Recorder()

        handle = transport.open(ChatRequest(message="hi"), recorder.on_event, recorder.on_failure)
        handle.close()
        handle.close()
        await handle.wait()
        handle.close()
        await client.aclose()

        assert handle.closed is True
        assert recorder.events == []
        assert recorder.failures == []
