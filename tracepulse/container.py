"""Dependency injection container for tracepulse.

Wires the process-scoped singletons (settings, SQLite backend, change
tracking, event bus, query cache, profiler, coordinator, watcher, metrics
publisher) with the dependency-injector framework.

Tests build an isolated container and override ``settings`` (and ``clock``
where time matters):

    container = create_container(settings=Settings(codex_home=tmp, db_path=tmp / "t.db"))
    coordinator = container.coordinator()
"""

from __future__ import annotations

from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import Any

from dependency_injector import containers, providers

from tracepulse.config import Settings, load_settings
from tracepulse.ingestion.upserter import TranscriptIngester
from tracepulse.lib.log import get_logger
from tracepulse.lib.timestamps import now_ms
from tracepulse.pipeline.coordinator import IngestCoordinator
from tracepulse.pipeline.event_bus import EventBus
from tracepulse.pipeline.metrics import MetricsPublisher, Profiler
from tracepulse.pipeline.watch import FileWatcher
from tracepulse.storage.backend import SQLiteBackend
from tracepulse.storage.ingest_state import ChangeTrackingStore
from tracepulse.storage.query_cache import QueryCache

logger = get_logger(__name__)


def make_ingest_handler(coordinator: IngestCoordinator) -> Callable[[set[str]], Any]:
    """Watcher handler: any batch of changed transcripts triggers an incremental run."""

    def handle(paths: set[str]) -> None:
        logger.debug("watcher_triggered_ingest", paths=len(paths))
        coordinator.run_ingest("incremental")

    return handle


def tool_log_path(settings: Settings) -> Path | None:
    return settings.tui_log_path if settings.ingest_tui_log else None


def metrics_snapshot(
    profiler: Profiler,
    cache: QueryCache,
    coordinator: IngestCoordinator,
) -> dict[str, Any]:
    status = coordinator.get_ingest_status()
    return {
        **profiler.snapshot(),
        "cache": cache.stats(),
        "ingest_state": status.state,
        "last_sync_at": coordinator.get_last_sync_time(),
    }


class ApplicationContainer(containers.DeclarativeContainer):
    """Application-wide dependency injection container.

    Usage:
        container = ApplicationContainer()
        container.settings.override(providers.Object(settings))

        coordinator = container.coordinator()
        run = coordinator.run_ingest("full")
    """

    settings = providers.Singleton(load_settings, path=None)
    clock = providers.Object(now_ms)

    backend = providers.Singleton(SQLiteBackend, db_path=settings.provided.db_path)

    tracking = providers.Singleton(ChangeTrackingStore, backend=backend, clock=clock)

    bus = providers.Singleton(EventBus)

    cache = providers.Singleton(
        QueryCache,
        default_ttl_ms=settings.provided.query_cache_ttl_ms,
        clock=clock,
    )

    profiler = providers.Singleton(Profiler, clock=clock)

    ingester = providers.Singleton(
        TranscriptIngester.from_settings,
        settings=settings,
        backend=backend,
        tracking=tracking,
    )

    coordinator = providers.Singleton(
        IngestCoordinator,
        sessions_dir=settings.provided.sessions_dir,
        ingester=ingester,
        tracking=tracking,
        bus=bus,
        profiler=profiler,
        cache=cache,
        clock=clock,
        tool_log_path=providers.Callable(tool_log_path, settings=settings),
    )

    watcher = providers.Singleton(
        FileWatcher,
        path=settings.provided.sessions_dir,
        handler=providers.Factory(make_ingest_handler, coordinator=coordinator),
        debounce_ms=settings.provided.debounce_ms,
        clock=clock,
    )

    metrics_publisher = providers.Singleton(
        MetricsPublisher,
        bus=bus,
        snapshot=providers.Factory(partial, metrics_snapshot, profiler, cache, coordinator),
        interval_s=settings.provided.metrics_interval_s,
    )


def create_container(
    settings: Settings | None = None,
    config_path: Path | None = None,
) -> ApplicationContainer:
    """Create and configure the application container.

    Args:
        settings: Pre-built settings; wins over ``config_path``.
        config_path: Optional path to a config file. If None, uses the default location.
    """
    container = ApplicationContainer()
    if settings is not None:
        container.settings.override(providers.Object(settings))
    elif config_path is not None:
        container.settings.override(providers.Singleton(load_settings, path=config_path))
    return container


def shutdown_container(container: ApplicationContainer) -> None:
    """Stop background threads and close database connections."""
    container.watcher().stop()
    container.metrics_publisher().stop()
    container.backend().close()


__all__ = [
    "ApplicationContainer",
    "create_container",
    "make_ingest_handler",
    "metrics_snapshot",
    "shutdown_container",
    "tool_log_path",
]
