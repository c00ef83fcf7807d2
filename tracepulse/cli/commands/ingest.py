"""Ingest command."""

from __future__ import annotations

import click
from rich.table import Table

from tracepulse.cli.helpers import fail, format_counts, print_json
from tracepulse.cli.types import AppEnv
from tracepulse.errors import TracepulseError


@click.command("ingest")
@click.option("--full", is_flag=True, help="Re-parse every transcript and forget files that disappeared")
@click.option("--json", "as_json", is_flag=True, help="Print the run as JSON")
@click.pass_obj
def ingest_command(env: AppEnv, full: bool, as_json: bool) -> None:
    """Ingest new or changed transcripts."""
    try:
        run = env.container.coordinator().run_ingest("full" if full else "incremental")
    except TracepulseError as exc:
        fail("ingest", str(exc))

    if as_json:
        print_json(run.model_dump())
    else:
        console = env.console
        if run.error:
            console.print(f"[red]Ingest failed:[/red] {run.error}")
        else:
            console.print(
                f"[green]{run.mode.capitalize()} ingest[/green]: "
                f"{run.files_scanned} scanned, {run.files_changed} changed, "
                f"{run.files_ingested} ingested, {run.files_failed} failed"
                + (f", {run.files_missing} missing" if run.files_missing else "")
                + f" in {run.duration_ms} ms"
            )
            console.print(f"Records: {format_counts(run.records)}")
        if run.errors:
            table = Table(title="Failed files")
            table.add_column("Path")
            table.add_column("Error")
            for error in run.errors:
                table.add_row(error.path, error.message)
            console.print(table)

    if run.error:
        raise SystemExit(1)
