"""Serve command."""

from __future__ import annotations

import click
import uvicorn

from tracepulse.cli.helpers import fail
from tracepulse.cli.types import AppEnv
from tracepulse.errors import TracepulseError


@click.command("serve")
@click.option("--host", default="127.0.0.1", help="Host to bind")
@click.option("--port", default=8000, help="Port to bind")
@click.pass_obj
def serve_command(env: AppEnv, host: str, port: int) -> None:
    """Start the dashboard API server."""
    from tracepulse.server.app import create_app

    try:
        app = create_app(env.container)
    except TracepulseError as exc:
        fail("serve", str(exc))

    env.console.print(f"Starting server at http://{host}:{port}/docs")
    uvicorn.run(app, host=host, port=port)
