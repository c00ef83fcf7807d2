"""Ingestion coordination, live events, watching and metrics."""

from __future__ import annotations

from .coordinator import IngestCoordinator
from .debounce import DebounceState, Debouncer
from .event_bus import BusEvent, EventBus, Subscription
from .metrics import MetricsPublisher, Profiler
from .models import CoordinatorStatus, IngestRun, IngestStateListing
from .watch import FileWatcher, WatcherStatus

__all__ = [
    "BusEvent",
    "CoordinatorStatus",
    "DebounceState",
    "Debouncer",
    "EventBus",
    "FileWatcher",
    "IngestCoordinator",
    "IngestRun",
    "IngestStateListing",
    "MetricsPublisher",
    "Profiler",
    "Subscription",
    "WatcherStatus",
]
