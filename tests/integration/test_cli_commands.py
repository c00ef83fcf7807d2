"""Integration tests for the tracepulse CLI."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from tests.helpers import SESSION_ID, build_session, invoke_command, json_output, rollout_path, write_transcript
from tracepulse.cli.click_app import cli
from tracepulse.cli.commands import watch as watch_module
from tracepulse.pipeline.event_bus import INGEST_EVENT, BusEvent

pytestmark = pytest.mark.integration


@pytest.fixture
def run_cli(codex_home, db_path):
    def _run(*args):
        return invoke_command(cli, list(args), codex_home=codex_home, db_path=db_path)

    return _run


@pytest.fixture
def transcript(sessions_dir):
    return write_transcript(rollout_path(sessions_dir), build_session(SESSION_ID))


class TestIngestCommand:
    def test_human_output(self, run_cli, transcript):
        result = run_cli("ingest")
        assert result.exit_code == 0, result.output
        assert "1 ingested" in result.output
        assert "0 failed" in result.output

    def test_json_output(self, run_cli, transcript):
        result = run_cli("ingest", "--json")
        assert result.exit_code == 0, result.output
        run = json_output(result)
        assert run["mode"] == "incremental"
        assert run["files_ingested"] == 1
        assert run["records"]["messages"] == 4

    def test_second_run_sees_no_changes(self, run_cli, transcript):
        run_cli("ingest")
        run = json_output(run_cli("ingest", "--json"))
        assert run["files_changed"] == 0

    def test_full_flag(self, run_cli, transcript):
        run_cli("ingest")
        run = json_output(run_cli("ingest", "--full", "--json"))
        assert run["mode"] == "full"
        assert run["files_changed"] == 1

    def test_failed_files_listed(self, run_cli, transcript, sessions_dir):
        (sessions_dir / "bad.jsonl").write_text("{nope\n{}\n")
        result = run_cli("ingest")
        assert result.exit_code == 0, result.output
        assert "1 failed" in result.output
        assert "Failed files" in result.output

    def test_missing_log_directory_exits_nonzero(self, tmp_path, db_path):
        result = invoke_command(cli, ["ingest"], codex_home=tmp_path / "no-codex", db_path=db_path)
        assert result.exit_code == 1
        assert "Ingest failed" in result.output

    def test_bad_config(self, tmp_path, codex_home, db_path):
        config = tmp_path / "config.json"
        config.write_text("{broken")
        result = invoke_command(cli, ["--config", str(config), "ingest"], codex_home=codex_home, db_path=db_path)
        assert result.exit_code == 1
        assert "Failed to read config file" in result.output


class TestStatusAndFiles:
    def test_status_json(self, run_cli, transcript):
        run_cli("ingest")
        status = json_output(run_cli("status", "--json"))
        assert status["state"] == "idle"
        assert status["tracked_files"] == 1
        assert status["failed_files"] == 0
        assert status["last_sync_at"] is not None

    def test_status_human(self, run_cli):
        result = run_cli("status")
        assert result.exit_code == 0, result.output
        assert "State: idle" in result.output
        assert "Last sync: -" in result.output

    def test_files_json(self, run_cli, transcript):
        run_cli("ingest")
        listing = json_output(run_cli("files", "--json"))
        assert listing["total"] == 1
        assert listing["files"][0]["path"] == str(transcript)

    def test_files_table(self, run_cli, transcript):
        run_cli("ingest")
        result = run_cli("files", "--search", "rollout")
        assert result.exit_code == 0, result.output
        assert "Tracked files (1 total" in result.output

    def test_files_limit_validated(self, run_cli):
        assert run_cli("files", "--limit", "0").exit_code == 2


class _InterruptingEvent:
    def wait(self, timeout=None):
        raise KeyboardInterrupt


class TestWatchCommand:
    def test_missing_directory_fails(self, tmp_path, db_path):
        result = invoke_command(cli, ["watch"], codex_home=tmp_path / "no-codex", db_path=db_path)
        assert result.exit_code == 1
        assert "watch:" in result.output
        assert "not a directory" in result.output

    def test_runs_until_interrupted(self, run_cli, transcript, monkeypatch):
        monkeypatch.setattr(watch_module, "threading", SimpleNamespace(Event=_InterruptingEvent))
        result = run_cli("watch")
        assert result.exit_code == 0, result.output
        assert "Watching" in result.output
        assert "ingest" in result.output
        assert "Stopping" in result.output

    def test_describe_event(self):
        ok = BusEvent(type=INGEST_EVENT, payload={"status": "complete", "ts": 1, "result": {"files_changed": 2}})
        failed = BusEvent(type=INGEST_EVENT, payload={"status": "error", "result": {"error": "gone"}})
        assert "2 changed" in watch_module.describe_event(ok)
        assert "gone" in watch_module.describe_event(failed)


class TestGroup:
    def test_version(self):
        result = invoke_command(cli, ["--version"])
        assert result.exit_code == 0
        assert "tracepulse" in result.output

    def test_help_does_not_touch_database(self, run_cli, db_path):
        result = run_cli("--help")
        assert result.exit_code == 0
        assert "ingest" in result.output
        assert not db_path.exists()
