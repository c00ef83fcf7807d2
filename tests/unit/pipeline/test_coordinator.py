"""Tests for IngestCoordinator.

Covers:
- Incremental and full runs over real transcript files
- Malformed files counted as failures without aborting the run
- retry_failed on and off
- Files that disappear (full mode)
- Single-flight: concurrent callers join the in-flight run
- Run-level errors, ingest events, cache invalidation, timings
- Paged ingest-state listing
- codex-tui.log picked up with the transcripts, or skipped when absent or disabled
"""

from __future__ import annotations

import threading
import time

import pytest

from tests.helpers import SESSION_ID, build_session, write_transcript
from tracepulse.ingestion.discovery import discover_transcripts
from tracepulse.pipeline.coordinator import MAX_PAGE_SIZE, IngestCoordinator
from tracepulse.pipeline.event_bus import INGEST_EVENT

WAIT = 5.0
OTHER_SESSION = "0199ffff-0000-7000-8000-000000000001"


@pytest.fixture
def coordinator(container):
    return container.coordinator()


@pytest.fixture
def events(container):
    received = []
    unsubscribe = container.bus().subscribe(received.append, types={INGEST_EVENT})
    yield received
    unsubscribe()


def write_pair(sessions_dir):
    """a.jsonl is valid; b.jsonl has a malformed complete line."""
    good = write_transcript(sessions_dir / "a.jsonl", build_session(SESSION_ID))
    bad = sessions_dir / "b.jsonl"
    bad.write_text('{"type": "session_meta", "payload": {"id": "x"}}\n{oops\n')
    return good, bad


# =============================================================================
# Runs
# =============================================================================


class TestRuns:
    def test_incremental_run(self, coordinator, sessions_dir, events):
        write_transcript(sessions_dir / "a.jsonl", build_session(SESSION_ID))
        write_transcript(sessions_dir / "b.jsonl", build_session(OTHER_SESSION))

        run = coordinator.run_ingest("incremental")
        assert run.finished
        assert run.error is None
        assert run.files_scanned == 2
        assert run.files_changed == 2
        assert run.files_ingested == 2
        assert run.records["messages"] == 8
        assert run.duration_ms is not None

        status = coordinator.get_ingest_status()
        assert status.state == "idle"
        assert status.last_run.run_id == run.run_id
        assert status.last_run_at == run.finished_at

        assert len(events) == 1
        payload = events[0].payload
        assert payload["status"] == "complete"
        assert payload["result"]["files_changed"] == 2
        assert payload["result"]["error_count"] == 0
        assert "errors" not in payload["result"]

    def test_second_incremental_run_is_noop(self, coordinator, sessions_dir):
        write_transcript(sessions_dir / "a.jsonl", build_session())
        coordinator.run_ingest("incremental")
        run = coordinator.run_ingest("incremental")
        assert run.files_scanned == 1
        assert run.files_changed == 0
        assert run.records == {}

    def test_full_run_reprocesses_everything(self, coordinator, sessions_dir, container):
        write_transcript(sessions_dir / "a.jsonl", build_session())
        coordinator.run_ingest("incremental")
        run = coordinator.run_ingest("full")
        assert run.files_changed == 1
        assert container.backend().count_rows("message") == 4

    def test_unknown_mode(self, coordinator):
        with pytest.raises(ValueError):
            coordinator.run_ingest("sideways")

    def test_empty_directory(self, coordinator):
        run = coordinator.run_ingest("incremental")
        assert run.error is None
        assert run.files_scanned == 0


class TestFailures:
    def test_malformed_file_does_not_abort(self, coordinator, sessions_dir, container):
        good, bad = write_pair(sessions_dir)
        run = coordinator.run_ingest("full")
        assert run.error is None
        assert run.files_scanned == 2
        assert run.files_changed == 2
        assert run.files_ingested == 1
        assert run.files_failed == 1
        assert [error.path for error in run.errors] == [str(bad)]
        assert "line 2" in run.errors[0].message
        assert container.backend().count_rows("session") == 1

    def test_unterminated_garbage_file_fails(self, coordinator, sessions_dir, container):
        write_transcript(sessions_dir / "a.jsonl", build_session(SESSION_ID))
        bad = sessions_dir / "b.jsonl"
        bad.write_bytes(b"this is not json at all")

        run = coordinator.run_ingest("full")
        assert run.files_scanned == 2
        assert run.files_changed == 2
        assert run.files_failed == 1
        assert [error.path for error in run.errors] == [str(bad)]

        state = container.tracking().get(str(bad))
        assert state.last_error.startswith("line 1")
        assert state.last_ingested_at is None
        assert state.signature is None

    def test_failed_file_retried_by_default(self, coordinator, sessions_dir):
        write_pair(sessions_dir)
        coordinator.run_ingest("full")
        run = coordinator.run_ingest("incremental")
        assert run.files_changed == 1
        assert run.files_failed == 1

    def test_failed_file_parked_without_retry(self, container, settings, sessions_dir):
        settings.retry_failed = False
        coordinator = container.coordinator()
        write_pair(sessions_dir)
        coordinator.run_ingest("full")
        run = coordinator.run_ingest("incremental")
        assert run.files_changed == 0
        assert run.files_failed == 0

    def test_missing_log_directory(self, coordinator, sessions_dir, events):
        sessions_dir.rmdir()
        run = coordinator.run_ingest("incremental")
        assert run.finished
        assert "Log directory not found" in run.error
        assert coordinator.get_ingest_status().state == "idle"
        assert events[0].payload["status"] == "error"

    def test_unexpected_error_becomes_run_error(self, container, sessions_dir):
        def broken(path):
            raise RuntimeError("disk on fire")

        coordinator = IngestCoordinator(
            sessions_dir, container.ingester(), container.tracking(), container.bus(), discover=broken
        )
        run = coordinator.run_ingest("incremental")
        assert run.error == "disk on fire"
        assert coordinator.get_ingest_status().state == "idle"

    def test_deleted_files_forgotten_in_full_mode(self, coordinator, sessions_dir, container):
        first = write_transcript(sessions_dir / "a.jsonl", build_session(SESSION_ID))
        write_transcript(sessions_dir / "b.jsonl", build_session(OTHER_SESSION))
        coordinator.run_ingest("incremental")
        first.unlink()

        incremental = coordinator.run_ingest("incremental")
        assert incremental.files_missing == 0
        full = coordinator.run_ingest("full")
        assert full.files_missing == 1
        assert container.tracking().known_paths() == {str(sessions_dir / "b.jsonl")}
        # Records already stored are kept.
        assert container.backend().count_rows("session") == 2


# =============================================================================
# Single flight
# =============================================================================


class TestSingleFlight:
    def test_concurrent_callers_share_one_run(self, container, sessions_dir):
        write_transcript(sessions_dir / "a.jsonl", build_session())
        entered = threading.Event()
        release = threading.Event()
        discover_calls = []

        def slow_discover(path):
            discover_calls.append(path)
            entered.set()
            release.wait(WAIT)
            return discover_transcripts(path)

        coordinator = IngestCoordinator(
            sessions_dir, container.ingester(), container.tracking(), container.bus(), discover=slow_discover
        )
        results = []
        lock = threading.Lock()

        def caller(mode):
            run = coordinator.run_ingest(mode)
            with lock:
                results.append(run)

        owner = threading.Thread(target=caller, args=("incremental",))
        owner.start()
        assert entered.wait(WAIT)
        assert coordinator.get_ingest_status().state == "running"

        joiners = [threading.Thread(target=caller, args=(mode,)) for mode in ("incremental", "full", "incremental")]
        for joiner in joiners:
            joiner.start()
        time.sleep(0.2)
        release.set()
        for thread in [owner, *joiners]:
            thread.join(WAIT)

        assert len(discover_calls) == 1
        assert len(results) == 4
        assert {run.run_id for run in results} == {results[0].run_id}
        assert results[0].mode == "incremental"
        assert coordinator.get_ingest_status().state == "idle"

    def test_sequential_runs_are_distinct(self, coordinator):
        first = coordinator.run_ingest("incremental")
        second = coordinator.run_ingest("incremental")
        assert first.run_id != second.run_id


# =============================================================================
# Side effects and queries
# =============================================================================


class TestSideEffects:
    def test_cache_invalidated_after_ingest(self, coordinator, container, sessions_dir):
        cache = container.cache()
        cache.cached_query("overview", lambda: {"stale": True})
        write_transcript(sessions_dir / "a.jsonl", build_session())
        coordinator.run_ingest("incremental")
        assert cache.stats()["entries"] == 0

    def test_cache_kept_when_nothing_changed(self, coordinator, container):
        cache = container.cache()
        cache.cached_query("overview", lambda: {"fresh": True})
        coordinator.run_ingest("incremental")
        assert cache.stats()["entries"] == 1

    def test_timing_recorded(self, coordinator, container):
        coordinator.run_ingest("full")
        timings = container.profiler().snapshot()["timings"]
        assert timings["ingest.full"]["count"] == 1

    def test_last_sync_time(self, coordinator, sessions_dir, fake_clock):
        assert coordinator.get_last_sync_time() is None
        write_transcript(sessions_dir / "a.jsonl", build_session())
        coordinator.run_ingest("incremental")
        assert coordinator.get_last_sync_time() == int(fake_clock())


class TestIngestStateListing:
    def test_paging_and_search(self, coordinator, sessions_dir):
        for index in range(3):
            write_transcript(sessions_dir / f"file-{index}.jsonl", build_session(f"s-{index}"))
        coordinator.run_ingest("incremental")

        page = coordinator.get_ingest_state(limit=2)
        assert page.total == 3
        assert len(page.files) == 2
        assert page.failed_files == 0

        searched = coordinator.get_ingest_state(search="  file-1 ")
        assert [state.path for state in searched.files] == [str(sessions_dir / "file-1.jsonl")]
        assert searched.total == 1

    def test_limits_clamped(self, coordinator):
        assert coordinator.get_ingest_state(limit=0).limit == 1
        assert coordinator.get_ingest_state(limit=10_000).limit == MAX_PAGE_SIZE
        assert coordinator.get_ingest_state(offset=-3).offset == 0


# =============================================================================
# TUI log
# =============================================================================

TUI_LOG = (
    '2025-01-05T10:00:00Z INFO FunctionCall: shell {"command": "cargo build"}\n'
    '2025-01-05T10:00:04Z INFO ToolCall: shell {"command": "cargo build", "exit_code": 0}\n'
    "2025-01-05T10:01:00Z WARN BackgroundEvent: Execution failed: sandbox denied tool=apply_patch\n"
)


def write_tui_log(settings, text: str = TUI_LOG):
    path = settings.tui_log_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestTuiLog:
    def test_log_ingested_alongside_transcripts(self, coordinator, settings, sessions_dir, container):
        write_transcript(sessions_dir / "a.jsonl", build_session(SESSION_ID))
        write_tui_log(settings)

        run = coordinator.run_ingest("incremental")
        assert run.files_scanned == 2
        assert run.files_ingested == 2
        assert run.records["tool_calls"] == 3

        rows, total = container.backend().list_tool_calls()
        assert total == 3
        orphaned = [row for row in rows if row["session_id"] is None]
        assert sorted(row["status"] for row in orphaned) == ["failed", "ok"]

        again = coordinator.run_ingest("incremental")
        assert again.files_scanned == 2
        assert again.files_changed == 0

    def test_appended_log_replaces_rows(self, coordinator, settings, container):
        path = write_tui_log(settings)
        coordinator.run_ingest("incremental")
        with path.open("a") as handle:
            handle.write('2025-01-05T10:02:00Z INFO FunctionCall: shell {"command": "ls"}\n')

        run = coordinator.run_ingest("incremental")
        assert run.files_changed == 1
        assert container.backend().count_rows("tool_call") == 3

    def test_missing_log_not_counted(self, coordinator, sessions_dir):
        write_transcript(sessions_dir / "a.jsonl", build_session())
        run = coordinator.run_ingest("incremental")
        assert run.files_scanned == 1
        assert run.error is None

    def test_disabled(self, container, settings, sessions_dir):
        settings.ingest_tui_log = False
        write_tui_log(settings)
        run = container.coordinator().run_ingest("full")
        assert run.files_scanned == 0
        assert container.backend().count_rows("tool_call") == 0
