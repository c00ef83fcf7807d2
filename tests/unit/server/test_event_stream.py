"""Tests for the server-sent event stream.

Covers:
- Initial metrics frame, forwarded bus events and heartbeats
- on_open hook running once the subscription exists
- Events published from another thread
- Bounded per-connection buffer dropping overflow
- Unsubscribe on disconnect and on close
"""

from __future__ import annotations

import asyncio

import pytest

from tracepulse.pipeline.event_bus import INGEST_EVENT, METRICS_EVENT, BusEvent, EventBus
from tracepulse.server.events import HEARTBEAT_EVENT, EventStream, format_sse


async def never_disconnected() -> bool:
    return False


def initial_event() -> BusEvent:
    return BusEvent(type=METRICS_EVENT, payload={"ts": 1, "metrics": {}}, ts=1)


def test_format_sse():
    assert format_sse("ingest", {"status": "complete"}) == 'event: ingest\ndata: {"status":"complete"}\n\n'


class TestEventStream:
    @pytest.mark.asyncio
    async def test_initial_frame_then_events(self):
        bus = EventBus()
        stream = EventStream(bus, initial=initial_event)
        frames = stream.frames(never_disconnected)

        first = await frames.__anext__()
        assert first == 'event: metrics\ndata: {"ts":1,"metrics":{}}\n\n'
        assert bus.subscriber_count == 1
        assert stream.subscribed is True

        bus.publish(BusEvent(type=INGEST_EVENT, payload={"status": "complete"}))
        frame = await asyncio.wait_for(frames.__anext__(), timeout=2)
        assert frame == 'event: ingest\ndata: {"status":"complete"}\n\n'

        await frames.aclose()
        assert bus.subscriber_count == 0
        assert stream.subscribed is False

    @pytest.mark.asyncio
    async def test_on_open_runs_after_subscribe(self):
        """Whatever on_open publishes is delivered right after the initial frame."""
        bus = EventBus()
        seen_subscribers = []

        def on_open():
            seen_subscribers.append(bus.subscriber_count)
            bus.publish(BusEvent(type=INGEST_EVENT, payload={"status": "complete"}))

        stream = EventStream(bus, initial=initial_event, on_open=on_open)
        frames = stream.frames(never_disconnected)

        assert (await frames.__anext__()).startswith("event: metrics\n")
        frame = await asyncio.wait_for(frames.__anext__(), timeout=2)
        assert frame == 'event: ingest\ndata: {"status":"complete"}\n\n'
        assert seen_subscribers == [1]
        await frames.aclose()

    @pytest.mark.asyncio
    async def test_enqueue_before_frames_is_ignored(self):
        stream = EventStream(EventBus(), initial=initial_event)
        stream._enqueue(BusEvent(type=INGEST_EVENT))
        assert stream.dropped == 0

    @pytest.mark.asyncio
    async def test_other_event_types_not_forwarded(self):
        bus = EventBus()
        stream = EventStream(bus, initial=initial_event)
        frames = stream.frames(never_disconnected)
        await frames.__anext__()
        assert bus.publish(BusEvent(type="debug")) == 0
        await frames.aclose()

    @pytest.mark.asyncio
    async def test_heartbeat_when_idle(self):
        bus = EventBus()
        stream = EventStream(bus, initial=initial_event, heartbeat_interval_s=0.05)
        frames = stream.frames(never_disconnected)
        await frames.__anext__()
        frame = await asyncio.wait_for(frames.__anext__(), timeout=2)
        assert frame.startswith(f"event: {HEARTBEAT_EVENT}\ndata: ")
        await frames.aclose()

    @pytest.mark.asyncio
    async def test_event_from_worker_thread(self):
        bus = EventBus()
        stream = EventStream(bus, initial=initial_event)
        frames = stream.frames(never_disconnected)
        await frames.__anext__()

        loop = asyncio.get_running_loop()
        event = BusEvent(type=INGEST_EVENT, payload={"status": "error"})
        delivered = await loop.run_in_executor(None, bus.publish, event)
        assert delivered == 1
        frame = await asyncio.wait_for(frames.__anext__(), timeout=2)
        assert frame.startswith("event: ingest\n")
        await frames.aclose()

    @pytest.mark.asyncio
    async def test_overflow_dropped(self):
        bus = EventBus()
        stream = EventStream(bus, initial=initial_event, queue_size=1)
        frames = stream.frames(never_disconnected)
        await frames.__anext__()

        for index in range(3):
            bus.publish(BusEvent(type=INGEST_EVENT, payload={"n": index}))
        await asyncio.sleep(0)
        assert stream.dropped == 2

        frame = await asyncio.wait_for(frames.__anext__(), timeout=2)
        assert frame == 'event: ingest\ndata: {"n":0}\n\n'
        await frames.aclose()

    @pytest.mark.asyncio
    async def test_disconnect_ends_stream(self):
        bus = EventBus()
        stream = EventStream(bus, initial=initial_event)
        disconnected = False

        async def is_disconnected() -> bool:
            return disconnected

        frames = stream.frames(is_disconnected)
        await frames.__anext__()
        disconnected = True
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(frames.__anext__(), timeout=2)
        assert bus.subscriber_count == 0
