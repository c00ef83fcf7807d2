"""SQLite schema management: DDL and version control."""

from __future__ import annotations

import sqlite3

from tracepulse.errors import DatabaseError
from tracepulse.lib.log import get_logger

logger = get_logger(__name__)
SCHEMA_VERSION = 1


SCHEMA_DDL = """
        CREATE TABLE IF NOT EXISTS ingest_state (
            path TEXT PRIMARY KEY,
            mtime_ns INTEGER,
            size_bytes INTEGER,
            content_hash TEXT,
            last_ingested_at INTEGER,
            last_error TEXT,
            updated_at INTEGER NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_ingest_state_updated
        ON ingest_state(updated_at);

        CREATE TABLE IF NOT EXISTS session (
            id TEXT PRIMARY KEY,
            ts INTEGER NOT NULL,
            cwd TEXT,
            originator TEXT,
            cli_version TEXT,
            model_provider TEXT,
            model TEXT,
            git_branch TEXT,
            git_commit TEXT,
            git_remote TEXT,
            project_id TEXT,
            source_file TEXT NOT NULL,
            source_line INTEGER NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_session_ts ON session(ts);
        CREATE INDEX IF NOT EXISTS idx_session_project ON session(project_id);

        CREATE TABLE IF NOT EXISTS project (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            root_path TEXT,
            git_remote TEXT,
            first_seen_ts INTEGER NOT NULL,
            last_seen_ts INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS message (
            id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
            ts INTEGER NOT NULL,
            content TEXT,
            source_file TEXT NOT NULL,
            source_line INTEGER NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_message_session ON message(session_id);
        CREATE INDEX IF NOT EXISTS idx_message_ts ON message(ts);
        CREATE INDEX IF NOT EXISTS idx_message_source ON message(source_file);

        CREATE TABLE IF NOT EXISTS model_call (
            id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            ts INTEGER NOT NULL,
            model TEXT,
            input_tokens INTEGER NOT NULL DEFAULT 0,
            cached_input_tokens INTEGER NOT NULL DEFAULT 0,
            output_tokens INTEGER NOT NULL DEFAULT 0,
            reasoning_tokens INTEGER NOT NULL DEFAULT 0,
            total_tokens INTEGER NOT NULL DEFAULT 0,
            duration_ms INTEGER,
            source_file TEXT NOT NULL,
            source_line INTEGER NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_model_call_session ON model_call(session_id);
        CREATE INDEX IF NOT EXISTS idx_model_call_ts ON model_call(ts);
        CREATE INDEX IF NOT EXISTS idx_model_call_source ON model_call(source_file);

        CREATE TABLE IF NOT EXISTS tool_call (
            id TEXT PRIMARY KEY,
            session_id TEXT,
            call_id TEXT,
            tool_name TEXT NOT NULL,
            command TEXT,
            status TEXT NOT NULL CHECK (status IN ('ok', 'failed', 'unknown')),
            start_ts INTEGER NOT NULL,
            end_ts INTEGER,
            duration_ms INTEGER,
            exit_code INTEGER,
            error TEXT,
            source_file TEXT NOT NULL,
            source_line INTEGER NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_tool_call_session ON tool_call(session_id);
        CREATE INDEX IF NOT EXISTS idx_tool_call_start ON tool_call(start_ts);
        CREATE INDEX IF NOT EXISTS idx_tool_call_source ON tool_call(source_file);
"""


def _ensure_schema(conn: sqlite3.Connection) -> None:
    """Create tables on a fresh database; refuse databases from a newer release."""
    current = conn.execute("PRAGMA user_version").fetchone()[0]
    if current > SCHEMA_VERSION:
        raise DatabaseError(
            f"Database schema version {current} is newer than supported version {SCHEMA_VERSION}"
        )
    if current == SCHEMA_VERSION:
        return
    conn.executescript(SCHEMA_DDL)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()
    logger.debug("schema_initialized", version=SCHEMA_VERSION)


__all__ = ["SCHEMA_DDL", "SCHEMA_VERSION", "_ensure_schema"]
