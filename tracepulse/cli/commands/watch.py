"""Watch command - ingest continuously and print live events."""

from __future__ import annotations

import threading

import click

from tracepulse.cli.helpers import fail, format_when
from tracepulse.cli.types import AppEnv
from tracepulse.errors import TracepulseError
from tracepulse.pipeline.event_bus import INGEST_EVENT, BusEvent


def describe_event(event: BusEvent) -> str:
    if event.type == INGEST_EVENT:
        result = event.payload.get("result", {})
        if event.payload.get("status") == "error":
            return f"[red]ingest error[/red] {result.get('error')}"
        return (
            f"[green]ingest[/green] {format_when(event.payload.get('ts'))}: "
            f"{result.get('files_changed', 0)} changed, {result.get('files_failed', 0)} failed"
        )
    return f"[dim]{event.type}[/dim] {format_when(event.ts)}"


@click.command("watch")
@click.option("--metrics/--no-metrics", default=False, help="Also print periodic metrics events")
@click.pass_obj
def watch_command(env: AppEnv, metrics: bool) -> None:
    """Watch the sessions directory and ingest on change (Ctrl-C to stop)."""
    try:
        container = env.container
        watcher = container.watcher()
        coordinator = container.coordinator()
        bus = container.bus()
    except TracepulseError as exc:
        fail("watch", str(exc))

    console = env.console
    unsubscribe = bus.subscribe(lambda event: console.print(describe_event(event)))
    publisher = container.metrics_publisher() if metrics else None
    stopped = threading.Event()
    try:
        if not watcher.start():
            errors = watcher.status().errors
            fail("watch", errors[-1] if errors else "watcher unavailable")
        console.print(f"Watching {watcher.status().watched_path}")
        if publisher is not None:
            publisher.start()
        coordinator.run_ingest("incremental")
        while not stopped.wait(1.0):
            if not watcher.running:
                errors = watcher.status().errors
                fail("watch", errors[-1] if errors else "watcher stopped")
    except KeyboardInterrupt:
        console.print("Stopping")
    finally:
        unsubscribe()
        watcher.stop()
        if publisher is not None:
            publisher.stop()
