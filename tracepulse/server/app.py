from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tracepulse.container import ApplicationContainer, create_container, shutdown_container
from tracepulse.server import api
from tracepulse.server.errors import install_error_handlers
from tracepulse.version import TRACEPULSE_VERSION


def create_app(container: ApplicationContainer | None = None) -> FastAPI:
    container = container or create_container()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        shutdown_container(container)

    app = FastAPI(
        title="Tracepulse",
        description="Usage metrics from Codex CLI transcripts",
        version=TRACEPULSE_VERSION,
        lifespan=lifespan,
    )
    app.state.container = container
    install_error_handlers(app)
    app.include_router(api.router, prefix="/api")
    return app


__all__ = ["create_app"]
