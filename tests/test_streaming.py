from __future__ import annotations

import json

import pytest

from servicequeue.queue.events import HelloEvent, RecallEvent, StateEvent, TicketPayload, parse_event
from servicequeue.queue.registry import SubscriptionRegistry
from servicequeue.response.streaming import LiveStreamer, StreamFormat


def _sse_payload(frame: str) -> str:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return frame[len("data: ") : -2]


async def _empty_state() -> StateEvent:
    return StateEvent(current=None, next=None, waiting=4)


@pytest.mark.asyncio
async def test_sse_stream_sends_hello_state_then_live_events():
    registry = SubscriptionRegistry()
    streamer = LiveStreamer(keepalive_seconds=5)
    frames = streamer.iter_frames(registry, 1, _empty_state)

    hello = parse_event(_sse_payload(await frames.__anext__()))
    assert isinstance(hello, HelloEvent)
    assert hello.ts > 0

    state = parse_event(_sse_payload(await frames.__anext__()))
    assert isinstance(state, StateEvent)
    assert state.waiting == 4

    current = TicketPayload(id=9, display_no="A009", service_id=1, status="CALLED")
    registry.publish(1, RecallEvent(current=current, waiting=2))
    frame = await frames.__anext__()
    wire = json.loads(_sse_payload(frame))
    assert wire["type"] == "RECALL"
    assert wire["current"]["displayNo"] == "A009"
    assert wire["current"]["serviceId"] == 1
    assert wire["waiting"] == 2

    await frames.aclose()
    assert registry.subscriber_count(1) == 0


@pytest.mark.asyncio
async def test_idle_stream_sends_keepalive_comments():
    registry = SubscriptionRegistry()
    frames = LiveStreamer(keepalive_seconds=0.01).iter_frames(registry, 1)

    await frames.__anext__()
    assert await frames.__anext__() == ": ping\n\n"

    await frames.aclose()


@pytest.mark.asyncio
async def test_ndjson_stream_and_registry_shutdown():
    registry = SubscriptionRegistry()
    streamer = LiveStreamer(keepalive_seconds=0.01, stream_format=StreamFormat.NDJSON)
    frames = streamer.iter_frames(registry, 3)

    hello = await frames.__anext__()
    assert hello.endswith("\n") and not hello.endswith("\n\n")
    assert json.loads(hello)["type"] == "HELLO"
    assert await frames.__anext__() == "\n"
    assert streamer.media_type == "application/x-ndjson"

    registry.close()
    with pytest.raises(StopAsyncIteration):
        while True:
            await frames.__anext__()


@pytest.mark.asyncio
async def test_failed_initial_state_is_skipped():
    async def broken_state():
        raise RuntimeError("store down")

    registry = SubscriptionRegistry()
    frames = LiveStreamer(keepalive_seconds=0.01).iter_frames(registry, 1, broken_state)

    assert "HELLO" in await frames.__anext__()
    assert await frames.__anext__() == ": ping\n\n"

    await frames.aclose()
    assert registry.subscriber_count() == 0


def test_streamer_rejects_non_positive_keepalive():
    with pytest.raises(ValueError):
        LiveStreamer(keepalive_seconds=0)
