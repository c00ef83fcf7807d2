"""Files command - list tracked transcripts."""

from __future__ import annotations

import click
from rich.table import Table

from tracepulse.cli.helpers import fail, format_when, print_json
from tracepulse.cli.types import AppEnv
from tracepulse.errors import TracepulseError


@click.command("files")
@click.option("--limit", type=click.IntRange(1, 500), default=50, show_default=True)
@click.option("--offset", type=click.IntRange(0), default=0, show_default=True)
@click.option("--search", default=None, help="Substring filter on the file path")
@click.option("--json", "as_json", is_flag=True, help="Emit machine-readable listing")
@click.pass_obj
def files_command(env: AppEnv, limit: int, offset: int, search: str | None, as_json: bool) -> None:
    """List tracked transcript files and their ingest state."""
    try:
        listing = env.container.coordinator().get_ingest_state(limit=limit, offset=offset, search=search)
    except TracepulseError as exc:
        fail("files", str(exc))

    if as_json:
        print_json(listing.model_dump())
        return

    table = Table(title=f"Tracked files ({listing.total} total, {listing.failed_files} with errors)")
    table.add_column("Path")
    table.add_column("Size", justify="right")
    table.add_column("Last ingested")
    table.add_column("Error")
    for state in listing.files:
        table.add_row(
            state.path,
            str(state.signature.size_bytes) if state.signature else "-",
            format_when(state.last_ingested_at),
            state.last_error or "",
        )
    env.console.print(table)
