"""Integration tests for the dashboard HTTP API.

Covers:
- Ingest trigger, status and file listing endpoints
- Sync status before and after a run
- Overview / models / sessions queries and cache invalidation on ingest
- Project and tool-call listings, including calls from codex-tui.log
- JSON error bodies for missing sessions and storage failures

The ``/api/events`` stream never ends on its own, so its frames are covered
by the EventStream unit tests instead.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tests.helpers import SESSION_ID, build_session, rollout_path, write_transcript
from tracepulse.errors import DatabaseError
from tracepulse.server.app import create_app

pytestmark = pytest.mark.integration


@pytest.fixture
def app(container):
    return create_app(container)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def transcript(sessions_dir):
    return write_transcript(rollout_path(sessions_dir), build_session(SESSION_ID, messages=4))


# =============================================================================
# Ingestion endpoints
# =============================================================================


class TestIngestEndpoints:
    def test_trigger_default_mode(self, client, transcript):
        response = client.post("/api/ingest")
        assert response.status_code == 200
        run = response.json()
        assert run["mode"] == "incremental"
        assert run["files_ingested"] == 1
        assert run["records"]["messages"] == 4
        assert run["finished_at"] is not None

    def test_trigger_full(self, client, transcript):
        response = client.post("/api/ingest", json={"mode": "full"})
        assert response.status_code == 200
        assert response.json()["mode"] == "full"

    def test_invalid_mode_rejected(self, client):
        assert client.post("/api/ingest", json={"mode": "sideways"}).status_code == 422

    def test_status(self, client, transcript):
        client.post("/api/ingest")
        body = client.get("/api/ingest").json()
        assert body["state"] == "idle"
        assert body["last_run"]["files_changed"] == 1
        assert body["watcher"]["running"] is False
        assert body["watcher"]["watched_path"].endswith("sessions")

    def test_file_listing(self, client, transcript, sessions_dir):
        (sessions_dir / "broken.jsonl").write_text("{nope\n{}\n")
        client.post("/api/ingest")

        body = client.get("/api/ingest/files", params={"limit": 1}).json()
        assert body["total"] == 2
        assert body["failed_files"] == 1
        assert len(body["files"]) == 1

        searched = client.get("/api/ingest/files", params={"search": "broken"}).json()
        assert searched["total"] == 1
        assert searched["files"][0]["last_error"].startswith("line 1")

    def test_file_listing_limit_validated(self, client):
        assert client.get("/api/ingest/files", params={"limit": 0}).status_code == 422
        assert client.get("/api/ingest/files", params={"limit": 501}).status_code == 422

    def test_sync_status(self, client, transcript, fake_clock):
        before = client.get("/api/sync-status").json()
        assert before == {"last_sync_at": None, "last_sync_iso": None, "state": "idle"}

        client.post("/api/ingest")
        after = client.get("/api/sync-status").json()
        assert after["last_sync_at"] == int(fake_clock())
        assert after["last_sync_iso"].endswith("+00:00")

    def test_events_route_registered(self, app):
        assert "/api/events" in {route.path for route in app.routes}


# =============================================================================
# Query endpoints
# =============================================================================


class TestQueryEndpoints:
    def test_overview(self, client, transcript):
        client.post("/api/ingest")
        body = client.get("/api/overview").json()
        assert body["range"] == {"start": None, "end": None}
        assert body["totals"]["sessions"] == 1
        assert body["totals"]["messages"] == 4
        assert body["totals"]["total_tokens"] == 160
        assert body["models"][0]["model"] == "gpt-5-codex"

    def test_overview_range(self, client, transcript):
        client.post("/api/ingest")
        body = client.get("/api/overview", params={"start": 0, "end": 1}).json()
        assert body["totals"]["messages"] == 0

    def test_ingest_invalidates_cached_overview(self, client, transcript):
        assert client.get("/api/overview").json()["totals"]["sessions"] == 0
        client.post("/api/ingest")
        assert client.get("/api/overview").json()["totals"]["sessions"] == 1

    def test_models(self, client, transcript):
        client.post("/api/ingest")
        rows = client.get("/api/models").json()
        assert rows[0]["model_calls"] == 1

    def test_sessions(self, client, transcript):
        client.post("/api/ingest")
        body = client.get("/api/sessions").json()
        assert body["total"] == 1
        assert body["sessions"][0]["id"] == SESSION_ID
        assert body["sessions"][0]["tool_calls"] == 1

    def test_session_detail(self, client, transcript):
        client.post("/api/ingest")
        body = client.get(f"/api/sessions/{SESSION_ID}").json()
        assert body["session"]["cwd"] == "/work/repo"
        assert len(body["messages"]) == 4
        assert body["tool_calls"][0]["status"] == "ok"

    def test_projects(self, client, transcript):
        client.post("/api/ingest")
        body = client.get("/api/projects").json()
        assert body["total"] == 1
        project = body["projects"][0]
        assert project["root_path"] == "/work/repo"
        assert project["sessions"] == 1
        assert project["total_tokens"] == 160
        session = client.get("/api/sessions").json()["sessions"][0]
        assert session["project_id"] == project["id"]

    def test_tool_calls(self, client, transcript, settings):
        settings.tui_log_path.parent.mkdir(parents=True)
        settings.tui_log_path.write_text(
            "2025-01-05T10:05:00Z WARN BackgroundEvent: Execution failed: exit code 1 tool=shell\n"
        )
        client.post("/api/ingest")

        body = client.get("/api/tool-calls").json()
        assert body["total"] == 2
        assert body["tool_calls"][0]["session_id"] is None

        failed = client.get("/api/tool-calls", params={"status": "failed"}).json()
        assert [row["exit_code"] for row in failed["tool_calls"]] == [1]

    def test_tool_calls_status_validated(self, client):
        assert client.get("/api/tool-calls", params={"status": "sideways"}).status_code == 422

    def test_session_not_found(self, client):
        response = client.get("/api/sessions/missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"


class TestErrors:
    def test_storage_failure_returns_json_error(self, client, container, monkeypatch):
        def broken(**kwargs):
            raise DatabaseError("database is locked")

        monkeypatch.setattr(container.backend(), "overview_totals", broken)
        response = client.get("/api/overview")
        assert response.status_code == 503
        assert response.json() == {"error": {"message": "database is locked", "code": "database_error"}}
