"""In-process broadcast channel for ingestion and metrics events.

Usage::

    bus = EventBus()
    unsubscribe = bus.subscribe(on_event, types={"ingest"})
    bus.publish(BusEvent(type="ingest", payload={"files_changed": 3}))
    unsubscribe()

Delivery is synchronous and at-most-once: events published while nobody
listens are gone. A listener that raises is logged and skipped; the other
listeners still receive the event.

Thread-safety: subscriber storage is guarded by a lock and each publish
iterates a snapshot, so subscribe, unsubscribe and publish may be called
from any thread. A listener removed while a publish is in progress (even
by another listener) receives nothing further from that publish.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from tracepulse.lib.log import get_logger
from tracepulse.lib.timestamps import now_ms

logger = get_logger(__name__)

INGEST_EVENT = "ingest"
METRICS_EVENT = "metrics"


@dataclass(frozen=True)
class BusEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    ts: int = field(default_factory=lambda: int(now_ms()))


Listener = Callable[[BusEvent], None]
Unsubscribe = Callable[[], None]


@dataclass
class Subscription:
    id: int
    listener: Listener
    types: frozenset[str] | None = None

    def accepts(self, event: BusEvent) -> bool:
        return self.types is None or event.type in self.types

    def deliver(self, event: BusEvent) -> None:
        self.listener(event)


class EventBus:
    """Subscription table plus fan-out."""

    def __init__(self) -> None:
        self._subscriptions: dict[int, Subscription] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def subscribe(self, listener: Listener, types: Iterable[str] | None = None) -> Unsubscribe:
        """Register ``listener``; returns an idempotent unsubscribe callable.

        Args:
            listener: Called with every matching event.
            types: Event types to receive; None receives everything.
        """
        subscription = Subscription(
            id=next(self._ids),
            listener=listener,
            types=frozenset(types) if types is not None else None,
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription

        def unsubscribe() -> None:
            with self._lock:
                self._subscriptions.pop(subscription.id, None)

        return unsubscribe

    def _is_active(self, subscription_id: int) -> bool:
        with self._lock:
            return subscription_id in self._subscriptions

    def publish(self, event: BusEvent) -> int:
        """Deliver ``event`` to every current subscriber; returns deliveries made."""
        with self._lock:
            snapshot = list(self._subscriptions.values())

        delivered = 0
        for subscription in snapshot:
            if not subscription.accepts(event) or not self._is_active(subscription.id):
                continue
            try:
                subscription.deliver(event)
            except Exception:
                logger.exception(
                    "listener_failed",
                    subscription_id=subscription.id,
                    event_type=event.type,
                )
                continue
            delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)


__all__ = [
    "BusEvent",
    "EventBus",
    "INGEST_EVENT",
    "Listener",
    "METRICS_EVENT",
    "Subscription",
    "Unsubscribe",
]
