from __future__ import annotations

from fastapi import Request

from tracepulse.config import Settings
from tracepulse.container import ApplicationContainer
from tracepulse.pipeline.coordinator import IngestCoordinator
from tracepulse.pipeline.event_bus import EventBus
from tracepulse.pipeline.metrics import MetricsPublisher
from tracepulse.pipeline.watch import FileWatcher
from tracepulse.storage.backend import SQLiteBackend
from tracepulse.storage.query_cache import QueryCache


def get_container(request: Request) -> ApplicationContainer:
    return request.app.state.container


def get_settings(request: Request) -> Settings:
    return get_container(request).settings()


def get_coordinator(request: Request) -> IngestCoordinator:
    return get_container(request).coordinator()


def get_backend(request: Request) -> SQLiteBackend:
    return get_container(request).backend()


def get_cache(request: Request) -> QueryCache:
    return get_container(request).cache()


def get_bus(request: Request) -> EventBus:
    return get_container(request).bus()


def get_watcher(request: Request) -> FileWatcher:
    return get_container(request).watcher()


def get_metrics_publisher(request: Request) -> MetricsPublisher:
    return get_container(request).metrics_publisher()
