from __future__ import annotations

import asyncio
from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from tracepulse.config import Settings
from tracepulse.lib.log import get_logger
from tracepulse.lib.timestamps import format_ms
from tracepulse.pipeline.coordinator import MAX_PAGE_SIZE, IngestCoordinator
from tracepulse.pipeline.event_bus import EventBus
from tracepulse.pipeline.metrics import MetricsPublisher
from tracepulse.pipeline.models import IngestRun, IngestStateListing
from tracepulse.pipeline.watch import FileWatcher
from tracepulse.server.deps import (
    get_backend,
    get_bus,
    get_cache,
    get_coordinator,
    get_metrics_publisher,
    get_settings,
    get_watcher,
)
from tracepulse.server.errors import error_response
from tracepulse.server.events import SSE_HEADERS, EventStream
from tracepulse.storage.backend import SQLiteBackend
from tracepulse.storage.query_cache import QueryCache, query_key

logger = get_logger(__name__)

router = APIRouter()


class IngestRequest(BaseModel):
    mode: Literal["full", "incremental"] = "incremental"


@router.post("/ingest", response_model=IngestRun)
def trigger_ingest(
    body: IngestRequest | None = Body(default=None),
    coordinator: IngestCoordinator = Depends(get_coordinator),
) -> IngestRun:
    mode = body.mode if body else "incremental"
    return coordinator.run_ingest(mode)


@router.get("/ingest")
def ingest_status(
    coordinator: IngestCoordinator = Depends(get_coordinator),
    watcher: FileWatcher = Depends(get_watcher),
) -> dict[str, Any]:
    status = coordinator.get_ingest_status()
    return {**status.model_dump(), "watcher": watcher.status().model_dump()}


@router.get("/ingest/files", response_model=IngestStateListing)
def ingest_files(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    search: str | None = None,
    coordinator: IngestCoordinator = Depends(get_coordinator),
) -> IngestStateListing:
    return coordinator.get_ingest_state(limit=limit, offset=offset, search=search)


@router.get("/sync-status")
def sync_status(coordinator: IngestCoordinator = Depends(get_coordinator)) -> dict[str, Any]:
    last_sync = coordinator.get_last_sync_time()
    return {
        "last_sync_at": last_sync,
        "last_sync_iso": format_ms(last_sync),
        "state": coordinator.get_ingest_status().state,
    }


# Runs started for new stream connections; held until done.
_bootstrap_runs: set[asyncio.Future[IngestRun]] = set()


def _bootstrap_done(future: asyncio.Future[IngestRun]) -> None:
    _bootstrap_runs.discard(future)
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("bootstrap_ingest_failed", error=str(exc), exc_info=exc)


def start_bootstrap_ingest(coordinator: IngestCoordinator) -> asyncio.Future[IngestRun]:
    """Start an incremental run off the event loop.

    Its result reaches subscribers as an ``ingest`` event.
    """
    future = asyncio.get_running_loop().run_in_executor(None, coordinator.run_ingest, "incremental")
    _bootstrap_runs.add(future)
    future.add_done_callback(_bootstrap_done)
    return future


@router.get("/events")
async def events(
    request: Request,
    bus: EventBus = Depends(get_bus),
    metrics: MetricsPublisher = Depends(get_metrics_publisher),
    watcher: FileWatcher = Depends(get_watcher),
    coordinator: IngestCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    await run_in_threadpool(watcher.start)
    metrics.start()

    stream = EventStream(
        bus,
        initial=metrics.build_event,
        on_open=lambda: start_bootstrap_ingest(coordinator),
        heartbeat_interval_s=settings.heartbeat_interval_s,
        queue_size=settings.subscriber_queue_size,
    )
    return StreamingResponse(
        stream.frames(request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/overview")
def overview(
    start: int | None = Query(None, description="Range start, epoch ms"),
    end: int | None = Query(None, description="Range end (exclusive), epoch ms"),
    backend: SQLiteBackend = Depends(get_backend),
    cache: QueryCache = Depends(get_cache),
) -> dict[str, Any]:
    def compute() -> dict[str, Any]:
        return {
            "range": {"start": start, "end": end},
            "totals": backend.overview_totals(start_ms=start, end_ms=end),
            "models": backend.model_breakdown(),
        }

    return cache.cached_query(query_key("overview", start=start, end=end), compute)


@router.get("/models")
def models(
    backend: SQLiteBackend = Depends(get_backend),
    cache: QueryCache = Depends(get_cache),
) -> list[dict[str, Any]]:
    return cache.cached_query(query_key("models"), backend.model_breakdown)


@router.get("/sessions")
def sessions(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    backend: SQLiteBackend = Depends(get_backend),
    cache: QueryCache = Depends(get_cache),
) -> dict[str, Any]:
    def compute() -> dict[str, Any]:
        return {
            "sessions": backend.list_sessions(limit=limit, offset=offset),
            "total": backend.count_rows("session"),
            "limit": limit,
            "offset": offset,
        }

    return cache.cached_query(query_key("sessions", limit=limit, offset=offset), compute)


@router.get("/sessions/{session_id}", response_model=None)
def session_detail(
    session_id: str,
    backend: SQLiteBackend = Depends(get_backend),
    cache: QueryCache = Depends(get_cache),
) -> dict[str, Any] | JSONResponse:
    detail = cache.cached_query(
        query_key("session_detail", session_id=session_id),
        lambda: backend.session_detail(session_id),
    )
    if detail is None:
        return error_response(f"Session not found: {session_id}", "not_found", status_code=404)
    return detail


@router.get("/projects")
def projects(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    backend: SQLiteBackend = Depends(get_backend),
    cache: QueryCache = Depends(get_cache),
) -> dict[str, Any]:
    def compute() -> dict[str, Any]:
        return {
            "projects": backend.list_projects(limit=limit, offset=offset),
            "total": backend.count_rows("project"),
            "limit": limit,
            "offset": offset,
        }

    return cache.cached_query(query_key("projects", limit=limit, offset=offset), compute)


@router.get("/tool-calls")
def tool_calls(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    status: Literal["ok", "failed", "unknown"] | None = None,
    tool: str | None = None,
    backend: SQLiteBackend = Depends(get_backend),
    cache: QueryCache = Depends(get_cache),
) -> dict[str, Any]:
    def compute() -> dict[str, Any]:
        rows, total = backend.list_tool_calls(limit=limit, offset=offset, status=status, tool=tool)
        return {"tool_calls": rows, "total": total, "limit": limit, "offset": offset}

    return cache.cached_query(
        query_key("tool_calls", limit=limit, offset=offset, status=status, tool=tool),
        compute,
    )
