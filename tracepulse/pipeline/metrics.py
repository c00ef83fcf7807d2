"""Timing statistics and periodic ``metrics`` events."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any

from tracepulse.lib.log import get_logger
from tracepulse.lib.timestamps import Clock, now_ms
from tracepulse.pipeline.event_bus import METRICS_EVENT, BusEvent, EventBus

logger = get_logger(__name__)

# Operations slower than this are logged.
SLOW_THRESHOLD_MS = 1000.0


@dataclass
class TimingSummary:
    count: int
    total_ms: float
    avg_ms: float
    min_ms: float
    max_ms: float
    last_ms: float
    last_at: int


class Profiler:
    """Aggregates named timings: count, total, average, min, max, last."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or now_ms
        self._timings: dict[str, TimingSummary] = {}
        self._lock = threading.Lock()

    def record_timing(self, name: str, duration_ms: float) -> TimingSummary:
        now = int(self._clock())
        with self._lock:
            summary = self._timings.get(name)
            if summary is None:
                summary = TimingSummary(
                    count=1,
                    total_ms=duration_ms,
                    avg_ms=duration_ms,
                    min_ms=duration_ms,
                    max_ms=duration_ms,
                    last_ms=duration_ms,
                    last_at=now,
                )
                self._timings[name] = summary
            else:
                summary.count += 1
                summary.total_ms += duration_ms
                summary.avg_ms = summary.total_ms / summary.count
                summary.min_ms = min(summary.min_ms, duration_ms)
                summary.max_ms = max(summary.max_ms, duration_ms)
                summary.last_ms = duration_ms
                summary.last_at = now
            return TimingSummary(**asdict(summary))

    @contextmanager
    def measure(self, name: str, threshold_ms: float = SLOW_THRESHOLD_MS) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self.record_timing(name, duration_ms)
            if duration_ms > threshold_ms:
                logger.warning("slow_operation", name=name, duration_ms=round(duration_ms, 2))

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            timings = {name: asdict(summary) for name, summary in self._timings.items()}
        return {"generated_at": int(self._clock()), "timings": timings}

    def reset(self) -> None:
        with self._lock:
            self._timings.clear()


class MetricsPublisher:
    """Publishes a ``metrics`` event every ``interval_s`` on a daemon thread."""

    def __init__(
        self,
        bus: EventBus,
        snapshot: Callable[[], dict[str, Any]],
        interval_s: float = 60.0,
    ) -> None:
        self._bus = bus
        self._snapshot = snapshot
        self._interval_s = interval_s
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def build_event(self) -> BusEvent:
        ts = int(now_ms())
        return BusEvent(type=METRICS_EVENT, payload={"ts": ts, "metrics": self._snapshot()}, ts=ts)

    def publish_now(self) -> BusEvent:
        event = self.build_event()
        self._bus.publish(event)
        return event

    def _run(self) -> None:
        while not self._stop.wait(self._interval_s):
            try:
                self.publish_now()
            except Exception:
                logger.exception("metrics_publish_failed")

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="tracepulse-metrics", daemon=True)
            self._thread.start()
        logger.debug("metrics_publisher_started", interval_s=self._interval_s)

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._stop.set()
        if thread is None:
            return
        thread.join(timeout)
        with self._lock:
            # A publish still in flight keeps the thread tracked until it exits.
            if not thread.is_alive() and self._thread is thread:
                self._thread = None


__all__ = ["MetricsPublisher", "Profiler", "SLOW_THRESHOLD_MS", "TimingSummary"]
