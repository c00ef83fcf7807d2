"""Status command - coordinator state, last run and last sync time."""

from __future__ import annotations

import click

from tracepulse.cli.helpers import fail, format_counts, format_when, print_json
from tracepulse.cli.types import AppEnv
from tracepulse.errors import TracepulseError


@click.command("status")
@click.option("--json", "as_json", is_flag=True, help="Emit machine-readable status")
@click.pass_obj
def status_command(env: AppEnv, as_json: bool) -> None:
    """Show ingestion status and the last sync time."""
    try:
        coordinator = env.container.coordinator()
        status = coordinator.get_ingest_status()
        last_sync = coordinator.get_last_sync_time()
        tracked = coordinator.get_ingest_state(limit=1)
    except TracepulseError as exc:
        fail("status", str(exc))

    if as_json:
        print_json(
            {
                **status.model_dump(),
                "last_sync_at": last_sync,
                "tracked_files": tracked.total,
                "failed_files": tracked.failed_files,
            }
        )
        return

    console = env.console
    console.print(f"State: {status.state}")
    console.print(f"Last sync: {format_when(last_sync)}")
    console.print(f"Tracked files: {tracked.total} ({tracked.failed_files} with errors)")
    run = status.last_run
    if run is not None:
        console.print(
            f"Last run: {run.mode} at {format_when(run.finished_at)}, "
            f"{run.files_changed} changed, {run.files_failed} failed; {format_counts(run.records)}"
        )
