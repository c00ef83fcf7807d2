"""Server-sent event stream over the event bus.

One ``EventStream`` per connection. Bus listeners may run on any thread, so
events are handed to the connection's event loop with
``call_soon_threadsafe`` and buffered in a bounded queue. When the buffer is
full the event is dropped for that connection only.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from tracepulse.lib.json import dumps
from tracepulse.lib.log import get_logger
from tracepulse.lib.timestamps import now_ms
from tracepulse.pipeline.event_bus import INGEST_EVENT, METRICS_EVENT, BusEvent, EventBus

logger = get_logger(__name__)

HEARTBEAT_EVENT = "heartbeat"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {dumps(data)}\n\n"


class EventStream:
    def __init__(
        self,
        bus: EventBus,
        *,
        initial: Callable[[], BusEvent],
        heartbeat_interval_s: float = 30.0,
        queue_size: int = 256,
        on_open: Callable[[], object] | None = None,
    ) -> None:
        self._bus = bus
        self._initial = initial
        self._on_open = on_open
        self._heartbeat_interval_s = heartbeat_interval_s
        self._queue_size = queue_size
        self._queue: asyncio.Queue[BusEvent] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self.dropped = 0
        self.subscribed = False

    def _on_event(self, event: BusEvent) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._enqueue, event)
        except RuntimeError:
            # Loop already closed: the connection is going away.
            logger.debug("sse_loop_closed", event_type=event.type)

    def _enqueue(self, event: BusEvent) -> None:
        queue = self._queue
        if queue is None:
            return
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("sse_event_dropped", event_type=event.type, dropped=self.dropped)

    async def frames(self, is_disconnected: Callable[[], Awaitable[bool]]) -> AsyncIterator[str]:
        """Yield SSE frames until the client disconnects.

        ``on_open`` runs once the subscription is in place, so anything it
        publishes (such as the result of a bootstrap ingest) reaches this
        connection right after the initial frame. The subscription is removed
        when the generator finishes, is closed, or is cancelled.
        """
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        unsubscribe = self._bus.subscribe(self._on_event, types={INGEST_EVENT, METRICS_EVENT})
        self.subscribed = True
        try:
            if self._on_open is not None:
                self._on_open()
            initial = self._initial()
            yield format_sse(initial.type, initial.payload)

            next_heartbeat = self._loop.time() + self._heartbeat_interval_s
            while not await is_disconnected():
                timeout = max(0.0, next_heartbeat - self._loop.time())
                try:
                    event = await asyncio.wait_for(self._queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    next_heartbeat = self._loop.time() + self._heartbeat_interval_s
                    yield format_sse(HEARTBEAT_EVENT, {"ts": int(now_ms())})
                    continue
                yield format_sse(event.type, event.payload)
        finally:
            unsubscribe()
            self.subscribed = False
            logger.debug("sse_stream_closed", dropped=self.dropped)


__all__ = ["EventStream", "HEARTBEAT_EVENT", "SSE_HEADERS", "format_sse"]
