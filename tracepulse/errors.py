"""Tracepulse error hierarchy.

All project exceptions inherit from TracepulseError, enabling:
- ``except TracepulseError`` at top-level boundaries (CLI, HTTP handlers)
- Fine-grained catches deeper in the stack (``except TranscriptParseError``)

Hierarchy:
    TracepulseError
    ├── ConfigError
    ├── DatabaseError
    ├── IngestError
    │   ├── TranscriptParseError    # one file, recorded as data
    │   └── LogDirectoryError       # aborts the current run
    └── WatcherError
"""

from __future__ import annotations


class TracepulseError(Exception):
    """Base class for all Tracepulse errors."""

    code = "tracepulse_error"


class ConfigError(TracepulseError):
    """Invalid or unreadable configuration."""

    code = "config_error"


class DatabaseError(TracepulseError):
    """Base class for database errors."""

    code = "database_error"


class IngestError(TracepulseError):
    """Base class for ingestion errors."""

    code = "ingest_error"


class TranscriptParseError(IngestError):
    """A transcript file could not be decoded into records."""

    code = "transcript_parse_error"

    def __init__(self, message: str, *, path: str | None = None, line: int | None = None) -> None:
        self.path = path
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class LogDirectoryError(IngestError):
    """The transcript directory is missing or unreadable."""

    code = "log_directory_error"


class WatcherError(TracepulseError):
    """The filesystem watcher could not be set up."""

    code = "watcher_error"


__all__ = [
    "TracepulseError",
    "ConfigError",
    "DatabaseError",
    "IngestError",
    "TranscriptParseError",
    "LogDirectoryError",
    "WatcherError",
]
