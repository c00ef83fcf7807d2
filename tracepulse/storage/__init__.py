"""Storage layer for Tracepulse - SQLite backend, change tracking, query cache."""

from __future__ import annotations

from .backend import SQLiteBackend
from .ingest_state import ChangeTrackingStore
from .query_cache import CacheEntry, QueryCache, query_key
from .store import (
    FileIngestState,
    FileSignature,
    MessageRecord,
    ModelCallRecord,
    ParsedTranscript,
    SessionRecord,
    ToolCallRecord,
)

__all__ = [
    "CacheEntry",
    "ChangeTrackingStore",
    "FileIngestState",
    "FileSignature",
    "MessageRecord",
    "ModelCallRecord",
    "ParsedTranscript",
    "QueryCache",
    "SQLiteBackend",
    "SessionRecord",
    "ToolCallRecord",
    "query_key",
]
