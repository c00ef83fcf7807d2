"""Quiet-window debouncing driven by an injected clock.

States::

    idle --notify--> pending(deadline) --tick past deadline--> firing --> idle
                                                                  |
                                        notify while firing ------+--> pending

Each ``notify`` pushes the deadline out by the quiet window. ``tick`` is
called by the owner's loop; nothing here sleeps or starts timers.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from enum import Enum

from tracepulse.lib.log import get_logger
from tracepulse.lib.timestamps import Clock, now_ms

logger = get_logger(__name__)

DEFAULT_QUIET_MS = 500


class DebounceState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    FIRING = "firing"


class Debouncer:
    def __init__(
        self,
        handler: Callable[[set[str]], object],
        quiet_ms: int = DEFAULT_QUIET_MS,
        clock: Clock | None = None,
    ) -> None:
        self._handler = handler
        self._quiet_ms = quiet_ms
        self._clock = clock or now_ms
        self._lock = threading.Lock()
        self._state = DebounceState.IDLE
        self._deadline: float | None = None
        self._paths: set[str] = set()
        self._rearm = False

    @property
    def state(self) -> DebounceState:
        with self._lock:
            return self._state

    @property
    def deadline(self) -> float | None:
        with self._lock:
            return self._deadline

    def notify(self, paths: Iterable[str] = ()) -> None:
        with self._lock:
            self._paths.update(paths)
            self._deadline = self._clock() + self._quiet_ms
            if self._state is DebounceState.FIRING:
                self._rearm = True
            else:
                self._state = DebounceState.PENDING

    def tick(self) -> bool:
        """Fire the handler if the quiet window has elapsed.

        Returns True when the handler ran.
        """
        with self._lock:
            if self._state is not DebounceState.PENDING:
                return False
            if self._deadline is not None and self._clock() < self._deadline:
                return False
            paths, self._paths = self._paths, set()
            self._state = DebounceState.FIRING
            self._rearm = False

        try:
            self._handler(paths)
        except Exception:
            logger.exception("debounced_handler_failed", paths=len(paths))
        finally:
            with self._lock:
                if self._rearm:
                    self._state = DebounceState.PENDING
                    self._rearm = False
                else:
                    self._state = DebounceState.IDLE
                    self._deadline = None
        return True

    def cancel(self) -> None:
        """Drop pending notifications without firing."""
        with self._lock:
            if self._state is DebounceState.PENDING:
                self._state = DebounceState.IDLE
            self._deadline = None
            self._paths.clear()
            self._rearm = False


__all__ = ["DEFAULT_QUIET_MS", "DebounceState", "Debouncer"]
