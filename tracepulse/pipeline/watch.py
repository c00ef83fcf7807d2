"""Filesystem watcher for the Codex sessions directory.

Runs ``watchfiles.watch`` on a background thread, feeds transcript changes
to a ``Debouncer`` and lets it call the injected handler once per quiet
window. The watcher knows nothing about ingestion; the application wires
the handler to ``IngestCoordinator.run_ingest``.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from watchfiles import Change, watch

from tracepulse.errors import WatcherError
from tracepulse.ingestion.discovery import is_transcript
from tracepulse.lib.log import get_logger
from tracepulse.lib.timestamps import Clock, now_ms
from tracepulse.pipeline.debounce import DEFAULT_QUIET_MS, Debouncer

logger = get_logger(__name__)

MAX_ERRORS = 25
# How often the watch loop wakes up to drive the debouncer (ms).
POLL_INTERVAL_MS = 100

WatchFn = Callable[..., Iterable[set[tuple[Change, str]]]]


class WatcherStatus(BaseModel):
    running: bool
    available: bool
    watched_path: str
    last_event_at: int | None = None
    errors: list[str] = []


def _transcript_filter(change: Change, path: str) -> bool:
    return is_transcript(path)


class FileWatcher:
    def __init__(
        self,
        path: Path,
        handler: Callable[[set[str]], Any],
        *,
        debounce_ms: int = DEFAULT_QUIET_MS,
        clock: Clock | None = None,
        watch_fn: WatchFn = watch,
    ) -> None:
        self._path = path
        self._clock = clock or now_ms
        self._watch_fn = watch_fn
        self._debouncer = Debouncer(handler, quiet_ms=debounce_ms, clock=self._clock)
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._errors: deque[str] = deque(maxlen=MAX_ERRORS)
        self._last_event_at: int | None = None
        self._available = True

    @property
    def debouncer(self) -> Debouncer:
        return self._debouncer

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def _record_error(self, message: str) -> None:
        with self._lock:
            self._errors.append(message)
            self._available = False
        logger.warning("watcher_error", path=str(self._path), error=message)

    def start(self) -> bool:
        """Start watching; a no-op if already running.

        Returns False when the watcher cannot run (errors are logged and
        reported through ``status()``), including while a previous watch
        thread is still winding down after ``stop()``.
        """
        try:
            with self._lock:
                if self._thread is not None and self._thread.is_alive():
                    if self._stop_event.is_set():
                        logger.warning("watcher_still_stopping", path=str(self._path))
                        return False
                    return True
                if not self._path.is_dir():
                    raise WatcherError(f"Watch path is not a directory: {self._path}")
                self._available = True
                self._stop_event.clear()
                self._thread = threading.Thread(target=self._run, name="tracepulse-watcher", daemon=True)
                self._thread.start()
        except WatcherError as exc:
            self._record_error(str(exc))
            return False
        logger.info("watcher_started", path=str(self._path))
        return True

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the watch thread to exit and wait up to ``timeout`` seconds.

        A thread still busy in the handler after the timeout stays tracked,
        so ``start()`` cannot run a second one next to it.
        """
        with self._lock:
            thread = self._thread
            self._stop_event.set()
        if thread is not None:
            thread.join(timeout)
        self._debouncer.cancel()
        if thread is None:
            return
        with self._lock:
            if thread.is_alive():
                logger.warning("watcher_stop_timeout", path=str(self._path), timeout=timeout)
                return
            if self._thread is thread:
                self._thread = None
        logger.info("watcher_stopped", path=str(self._path))

    def _run(self) -> None:
        try:
            for changes in self._watch_fn(
                self._path,
                watch_filter=_transcript_filter,
                stop_event=self._stop_event,
                yield_on_timeout=True,
                rust_timeout=POLL_INTERVAL_MS,
                debounce=POLL_INTERVAL_MS,
                step=POLL_INTERVAL_MS // 2,
                raise_interrupt=False,
                recursive=True,
            ):
                if self._stop_event.is_set():
                    break
                paths = {path for _change, path in changes if is_transcript(path)}
                if paths:
                    with self._lock:
                        self._last_event_at = int(self._clock())
                    self._debouncer.notify(paths)
                self._debouncer.tick()
        except Exception as exc:
            self._record_error(f"{exc.__class__.__name__}: {exc}")

    def status(self) -> WatcherStatus:
        with self._lock:
            return WatcherStatus(
                running=self.running,
                available=self._available,
                watched_path=str(self._path),
                last_event_at=self._last_event_at,
                errors=list(self._errors),
            )


__all__ = ["FileWatcher", "MAX_ERRORS", "WatcherStatus"]
