"""CLI entrypoint."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console

from tracepulse.cli.commands.files import files_command
from tracepulse.cli.commands.ingest import ingest_command
from tracepulse.cli.commands.serve import serve_command
from tracepulse.cli.commands.status import status_command
from tracepulse.cli.commands.watch import watch_command
from tracepulse.cli.types import AppEnv
from tracepulse.lib.log import configure_logging
from tracepulse.version import TRACEPULSE_VERSION


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to config.json",
)
@click.option("--codex-home", type=click.Path(path_type=Path), default=None, help="Codex home directory")
@click.option("--db", "db_path", type=click.Path(path_type=Path, dir_okay=False), default=None, help="SQLite database path")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON")
@click.version_option(TRACEPULSE_VERSION, prog_name="tracepulse")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    codex_home: Path | None,
    db_path: Path | None,
    verbose: bool,
    json_logs: bool,
) -> None:
    """Mine usage metrics from Codex CLI transcripts."""
    configure_logging(verbose=verbose, json_logs=json_logs)
    overrides = {"codex_home": codex_home, "db_path": db_path}
    env = AppEnv(
        console=Console(),
        config_path=config_path,
        overrides={key: value for key, value in overrides.items() if value is not None},
    )
    ctx.obj = env
    ctx.call_on_close(env.close)


cli.add_command(ingest_command)
cli.add_command(status_command)
cli.add_command(files_command)
cli.add_command(watch_command)
cli.add_command(serve_command)


def main() -> None:
    cli()


__all__ = ["cli", "main"]
