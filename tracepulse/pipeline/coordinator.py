"""Single-flight ingestion runs.

Every trigger (watcher, HTTP, CLI, stream connect) goes through
``IngestCoordinator.run_ingest``. At most one run executes at a time;
callers arriving while a run is in flight wait for it and receive the same
``IngestRun``.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path
from uuid import uuid4

from tracepulse.errors import LogDirectoryError
from tracepulse.ingestion.discovery import discover_transcripts
from tracepulse.ingestion.upserter import FileIngestResult, TranscriptIngester
from tracepulse.lib.log import get_logger
from tracepulse.lib.timestamps import Clock, now_ms
from tracepulse.pipeline.event_bus import INGEST_EVENT, BusEvent, EventBus
from tracepulse.pipeline.metrics import Profiler
from tracepulse.pipeline.models import (
    CoordinatorStatus,
    FileError,
    IngestMode,
    IngestRun,
    IngestStateListing,
)
from tracepulse.storage.ingest_state import ChangeTrackingStore
from tracepulse.storage.query_cache import QueryCache

logger = get_logger(__name__)

MAX_PAGE_SIZE = 500

Discover = Callable[[Path], list[Path]]


class IngestCoordinator:
    """Owns the coordinator status and every ``IngestRun``."""

    def __init__(
        self,
        sessions_dir: Path,
        ingester: TranscriptIngester,
        tracking: ChangeTrackingStore,
        bus: EventBus,
        *,
        profiler: Profiler | None = None,
        cache: QueryCache | None = None,
        clock: Clock | None = None,
        discover: Discover = discover_transcripts,
        tool_log_path: Path | None = None,
    ) -> None:
        self._sessions_dir = sessions_dir
        self._tool_log_path = tool_log_path
        self._ingester = ingester
        self._tracking = tracking
        self._bus = bus
        self._profiler = profiler
        self._cache = cache
        self._clock = clock or now_ms
        self._discover = discover

        self._lock = threading.Lock()
        self._inflight: Future[IngestRun] | None = None
        self._last_run: IngestRun | None = None

    def run_ingest(self, mode: IngestMode = "incremental") -> IngestRun:
        """Run (or join) an ingestion pass and return its finished ``IngestRun``.

        Run-level failures are reported on ``IngestRun.error``, not raised.
        """
        if mode not in ("full", "incremental"):
            raise ValueError(f"Unknown ingest mode: {mode!r}")

        with self._lock:
            inflight = self._inflight
            if inflight is None:
                future: Future[IngestRun] = Future()
                self._inflight = future
        if inflight is not None:
            logger.debug("ingest_joined_inflight_run", requested_mode=mode)
            return inflight.result()

        run = IngestRun(run_id=uuid4().hex, mode=mode, started_at=int(self._clock()))
        logger.info("ingest_started", run_id=run.run_id, mode=mode)
        start = time.perf_counter()
        try:
            self._execute(run)
        except Exception as exc:
            logger.exception("ingest_failed", run_id=run.run_id)
            run.error = str(exc) or exc.__class__.__name__
        finally:
            run.duration_ms = int((time.perf_counter() - start) * 1000)
            finished = self._finish(run, future)
        self._announce(finished)
        return finished

    def _execute(self, run: IngestRun) -> None:
        try:
            paths = self._discover(self._sessions_dir)
        except LogDirectoryError as exc:
            logger.warning("log_directory_unavailable", path=str(self._sessions_dir), error=str(exc))
            run.error = str(exc)
            return

        run.files_scanned = len(paths)
        force = run.mode == "full"
        for path in paths:
            self._tally(run, self._ingester.ingest_file(path, force=force))
        discovered = {str(path) for path in paths}

        # The TUI log is optional; without one there is nothing to scan.
        tool_log = self._tool_log_path
        if tool_log is not None and tool_log.is_file():
            run.files_scanned += 1
            discovered.add(str(tool_log))
            self._tally(run, self._ingester.ingest_tool_log(tool_log, force=force))

        if run.mode == "full":
            for missing in sorted(self._tracking.known_paths() - discovered):
                if self._tracking.forget(missing):
                    run.files_missing += 1

    @staticmethod
    def _tally(run: IngestRun, result: FileIngestResult) -> None:
        if not result.changed:
            return
        run.files_changed += 1
        if result.failed:
            run.files_failed += 1
            run.errors.append(FileError(path=result.path, message=result.error or "unknown error"))
            return
        run.files_ingested += 1
        for kind, count in result.records.items():
            run.records[kind] = run.records.get(kind, 0) + count

    def _finish(self, run: IngestRun, future: Future[IngestRun]) -> IngestRun:
        run.finished_at = int(self._clock())
        finished = run.model_copy(deep=True)
        with self._lock:
            self._last_run = finished
            self._inflight = None
        future.set_result(finished)
        return finished

    def _announce(self, run: IngestRun) -> None:
        if self._profiler is not None and run.duration_ms is not None:
            self._profiler.record_timing(f"ingest.{run.mode}", run.duration_ms)
        if self._cache is not None and (run.files_ingested or run.files_missing):
            self._cache.invalidate()
        logger.info(
            "ingest_finished",
            run_id=run.run_id,
            mode=run.mode,
            files_scanned=run.files_scanned,
            files_changed=run.files_changed,
            files_failed=run.files_failed,
            duration_ms=run.duration_ms,
            error=run.error,
        )
        self._bus.publish(
            BusEvent(
                type=INGEST_EVENT,
                payload={
                    "status": "error" if run.error else "complete",
                    "ts": run.finished_at,
                    "duration_ms": run.duration_ms,
                    "result": run.summary(),
                },
            )
        )

    def get_ingest_status(self) -> CoordinatorStatus:
        with self._lock:
            running = self._inflight is not None
            last_run = self._last_run
        return CoordinatorStatus(
            state="running" if running else "idle",
            last_run=last_run,
            last_run_at=last_run.finished_at if last_run else None,
        )

    def get_last_sync_time(self) -> int | None:
        """Latest time any file was ingested successfully (epoch ms)."""
        return self._tracking.last_updated_at()

    def get_ingest_state(
        self,
        limit: int = 50,
        offset: int = 0,
        search: str | None = None,
    ) -> IngestStateListing:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        search = search.strip() if search else None
        summary = self._tracking.summary(search)
        return IngestStateListing(
            files=self._tracking.list_states(limit=limit, offset=offset, search=search),
            total=summary["total_files"],
            limit=limit,
            offset=offset,
            failed_files=summary["failed_files"],
            last_ingested_at=summary["last_ingested_at"],
        )


__all__ = ["IngestCoordinator", "MAX_PAGE_SIZE"]
