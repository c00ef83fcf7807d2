"""JSON error bodies for the HTTP layer: ``{"error": {"message", "code"}}``."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tracepulse.errors import (
    ConfigError,
    DatabaseError,
    LogDirectoryError,
    TracepulseError,
    WatcherError,
)
from tracepulse.lib.log import get_logger

logger = get_logger(__name__)

_STATUS_BY_ERROR: list[tuple[type[TracepulseError], int]] = [
    (DatabaseError, 503),
    (LogDirectoryError, 503),
    (WatcherError, 503),
    (ConfigError, 500),
]


def error_response(message: str, code: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"message": message, "code": code}})


def status_for(exc: TracepulseError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def handle_tracepulse_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, TracepulseError)
    logger.error("request_failed", path=request.url.path, error=str(exc), code=exc.code)
    return error_response(str(exc), exc.code, status_for(exc))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TracepulseError, handle_tracepulse_error)


__all__ = ["error_response", "install_error_handlers", "status_for"]
