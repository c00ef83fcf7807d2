"""SQLite storage backend for transcript records and per-file ingest state."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from tracepulse.errors import DatabaseError
from tracepulse.lib.log import get_logger
from tracepulse.storage.schema import _ensure_schema
from tracepulse.storage.store import (
    FileIngestState,
    FileSignature,
    MessageRecord,
    ModelCallRecord,
    ParsedTranscript,
    ProjectRecord,
    SessionRecord,
    ToolCallRecord,
)

logger = get_logger(__name__)

# Seconds to wait on a locked database before failing.
DB_TIMEOUT = 30


def _row_to_state(row: sqlite3.Row) -> FileIngestState:
    signature = None
    if row["mtime_ns"] is not None and row["size_bytes"] is not None:
        signature = FileSignature(
            mtime_ns=row["mtime_ns"],
            size_bytes=row["size_bytes"],
            content_hash=row["content_hash"],
        )
    return FileIngestState(
        path=row["path"],
        signature=signature,
        last_ingested_at=row["last_ingested_at"],
        last_error=row["last_error"],
        updated_at=row["updated_at"],
    )


def _search_clause(search: str | None) -> tuple[str, tuple[Any, ...]]:
    if not search:
        return "", ()
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return "WHERE path LIKE ? ESCAPE '\\'", (f"%{escaped}%",)


class SQLiteBackend:
    """SQLite storage backend.

    Thread Safety:
        - Each thread gets its own connection via threading.local()
        - Transactions (``transaction()``) are connection-scoped
        - Writers are serialized by SQLite (``BEGIN IMMEDIATE`` + busy timeout)
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(self._db_path, timeout=DB_TIMEOUT, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute(f"PRAGMA busy_timeout = {DB_TIMEOUT * 1000}")
                _ensure_schema(conn)
            except sqlite3.Error as exc:
                raise DatabaseError(f"Cannot open database {self._db_path}: {exc}") from exc
            self._local.conn = conn
            self._local.transaction_depth = 0
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the body in one transaction; roll back everything on error.

        Nested use joins the outer transaction.
        """
        conn = self._get_connection()
        depth = self._local.transaction_depth
        if depth == 0:
            conn.execute("BEGIN IMMEDIATE")
        self._local.transaction_depth = depth + 1
        try:
            yield conn
        except BaseException:
            self._local.transaction_depth = depth
            if depth == 0:
                conn.rollback()
            raise
        self._local.transaction_depth = depth
        if depth == 0:
            conn.commit()

    def close(self) -> None:
        """Close every connection this backend opened."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._local = threading.local()

    # --- Ingest state ---

    def get_ingest_state(self, path: str) -> FileIngestState | None:
        row = (
            self._get_connection()
            .execute("SELECT * FROM ingest_state WHERE path = ?", (path,))
            .fetchone()
        )
        return _row_to_state(row) if row else None

    def upsert_ingest_state(self, state: FileIngestState) -> None:
        signature = state.signature
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO ingest_state (
                    path, mtime_ns, size_bytes, content_hash,
                    last_ingested_at, last_error, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    mtime_ns = excluded.mtime_ns,
                    size_bytes = excluded.size_bytes,
                    content_hash = excluded.content_hash,
                    last_ingested_at = excluded.last_ingested_at,
                    last_error = excluded.last_error,
                    updated_at = excluded.updated_at
                """,
                (
                    state.path,
                    signature.mtime_ns if signature else None,
                    signature.size_bytes if signature else None,
                    signature.content_hash if signature else None,
                    state.last_ingested_at,
                    state.last_error,
                    state.updated_at,
                ),
            )

    def delete_ingest_state(self, path: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM ingest_state WHERE path = ?", (path,))
        return cursor.rowcount > 0

    def ingest_state_paths(self) -> list[str]:
        rows = self._get_connection().execute("SELECT path FROM ingest_state").fetchall()
        return [row["path"] for row in rows]

    def list_ingest_states(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        search: str | None = None,
    ) -> list[FileIngestState]:
        where, params = _search_clause(search)
        rows = (
            self._get_connection()
            .execute(
                f"SELECT * FROM ingest_state {where} ORDER BY updated_at DESC, path LIMIT ? OFFSET ?",
                (*params, limit, offset),
            )
            .fetchall()
        )
        return [_row_to_state(row) for row in rows]

    def ingest_state_summary(self, search: str | None = None) -> dict[str, Any]:
        where, params = _search_clause(search)
        row = (
            self._get_connection()
            .execute(
                f"""
                SELECT COUNT(*) AS total_files,
                       SUM(CASE WHEN last_error IS NOT NULL THEN 1 ELSE 0 END) AS failed_files,
                       MAX(last_ingested_at) AS last_ingested_at
                  FROM ingest_state {where}
                """,
                params,
            )
            .fetchone()
        )
        return {
            "total_files": row["total_files"] or 0,
            "failed_files": row["failed_files"] or 0,
            "last_ingested_at": row["last_ingested_at"],
        }

    # --- Transcript records ---

    def delete_file_records(self, conn: sqlite3.Connection, source_file: str) -> int:
        deleted = 0
        for table in ("message", "model_call", "tool_call"):
            deleted += conn.execute(f"DELETE FROM {table} WHERE source_file = ?", (source_file,)).rowcount
        return deleted

    def upsert_session(self, conn: sqlite3.Connection, record: SessionRecord) -> None:
        # A later header for the same session only fills gaps.
        conn.execute(
            """
            INSERT INTO session (
                id, ts, cwd, originator, cli_version, model_provider, model,
                git_branch, git_commit, git_remote, project_id, source_file, source_line
            ) VALUES (
                :id, :ts, :cwd, :originator, :cli_version, :model_provider, :model,
                :git_branch, :git_commit, :git_remote, :project_id, :source_file, :source_line
            )
            ON CONFLICT(id) DO UPDATE SET
                ts = MIN(session.ts, excluded.ts),
                cwd = COALESCE(excluded.cwd, session.cwd),
                originator = COALESCE(excluded.originator, session.originator),
                cli_version = COALESCE(excluded.cli_version, session.cli_version),
                model_provider = COALESCE(excluded.model_provider, session.model_provider),
                model = COALESCE(excluded.model, session.model),
                git_branch = COALESCE(excluded.git_branch, session.git_branch),
                git_commit = COALESCE(excluded.git_commit, session.git_commit),
                git_remote = COALESCE(excluded.git_remote, session.git_remote),
                project_id = COALESCE(excluded.project_id, session.project_id),
                source_file = excluded.source_file,
                source_line = excluded.source_line
            """,
            record.model_dump(),
        )

    def upsert_project(self, conn: sqlite3.Connection, record: ProjectRecord) -> None:
        conn.execute(
            """
            INSERT INTO project (id, name, root_path, git_remote, first_seen_ts, last_seen_ts)
            VALUES (:id, :name, :root_path, :git_remote, :first_seen_ts, :last_seen_ts)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                root_path = COALESCE(excluded.root_path, project.root_path),
                git_remote = COALESCE(excluded.git_remote, project.git_remote),
                first_seen_ts = MIN(project.first_seen_ts, excluded.first_seen_ts),
                last_seen_ts = MAX(project.last_seen_ts, excluded.last_seen_ts)
            """,
            record.model_dump(),
        )

    def upsert_message(self, conn: sqlite3.Connection, record: MessageRecord) -> None:
        conn.execute(
            """
            INSERT INTO message (id, session_id, role, ts, content, source_file, source_line)
            VALUES (:id, :session_id, :role, :ts, :content, :source_file, :source_line)
            ON CONFLICT(id) DO UPDATE SET
                session_id = excluded.session_id,
                role = excluded.role,
                ts = excluded.ts,
                content = excluded.content,
                source_file = excluded.source_file,
                source_line = excluded.source_line
            """,
            record.model_dump(),
        )

    def upsert_model_call(self, conn: sqlite3.Connection, record: ModelCallRecord) -> None:
        conn.execute(
            """
            INSERT INTO model_call (
                id, session_id, ts, model, input_tokens, cached_input_tokens,
                output_tokens, reasoning_tokens, total_tokens, duration_ms,
                source_file, source_line
            ) VALUES (
                :id, :session_id, :ts, :model, :input_tokens, :cached_input_tokens,
                :output_tokens, :reasoning_tokens, :total_tokens, :duration_ms,
                :source_file, :source_line
            )
            ON CONFLICT(id) DO UPDATE SET
                model = excluded.model,
                input_tokens = excluded.input_tokens,
                cached_input_tokens = excluded.cached_input_tokens,
                output_tokens = excluded.output_tokens,
                reasoning_tokens = excluded.reasoning_tokens,
                total_tokens = excluded.total_tokens,
                duration_ms = excluded.duration_ms,
                source_file = excluded.source_file,
                source_line = excluded.source_line
            """,
            record.model_dump(),
        )

    def upsert_tool_call(self, conn: sqlite3.Connection, record: ToolCallRecord) -> None:
        conn.execute(
            """
            INSERT INTO tool_call (
                id, session_id, call_id, tool_name, command, status, start_ts,
                end_ts, duration_ms, exit_code, error, source_file, source_line
            ) VALUES (
                :id, :session_id, :call_id, :tool_name, :command, :status, :start_ts,
                :end_ts, :duration_ms, :exit_code, :error, :source_file, :source_line
            )
            ON CONFLICT(id) DO UPDATE SET
                tool_name = excluded.tool_name,
                command = excluded.command,
                status = excluded.status,
                end_ts = excluded.end_ts,
                duration_ms = excluded.duration_ms,
                exit_code = excluded.exit_code,
                error = excluded.error,
                source_file = excluded.source_file,
                source_line = excluded.source_line
            """,
            record.model_dump(),
        )

    def save_transcript(self, parsed: ParsedTranscript) -> dict[str, int]:
        """Upsert every record of one transcript atomically.

        Message, model-call and tool-call rows previously read from the same
        file are replaced, so a file rewritten shorter leaves nothing behind.
        Session rows are merged across files and are never removed here.
        """
        try:
            with self.transaction() as conn:
                if parsed.source_file is not None:
                    self.delete_file_records(conn, parsed.source_file)
                for project in parsed.projects:
                    self.upsert_project(conn, project)
                for session in parsed.sessions:
                    self.upsert_session(conn, session)
                for message in parsed.messages:
                    self.upsert_message(conn, message)
                for call in parsed.model_calls:
                    self.upsert_model_call(conn, call)
                for tool_call in parsed.tool_calls:
                    self.upsert_tool_call(conn, tool_call)
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to store session {parsed.session_id}: {exc}") from exc
        return parsed.counts()

    def save_tool_log(self, source_file: str, tool_calls: list[ToolCallRecord]) -> dict[str, int]:
        """Replace every tool call read from one TUI log."""
        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM tool_call WHERE source_file = ?", (source_file,))
                for tool_call in tool_calls:
                    self.upsert_tool_call(conn, tool_call)
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to store tool log {source_file}: {exc}") from exc
        return {"tool_calls": len(tool_calls)}

    # --- Read-side aggregations ---

    def overview_totals(self, *, start_ms: int | None = None, end_ms: int | None = None) -> dict[str, Any]:
        conn = self._get_connection()
        clauses: list[str] = []
        params: list[Any] = []
        if start_ms is not None:
            clauses.append("ts >= ?")
            params.append(start_ms)
        if end_ms is not None:
            clauses.append("ts < ?")
            params.append(end_ms)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        tool_where = where.replace("ts", "start_ts")

        sessions = conn.execute(f"SELECT COUNT(*) AS n FROM session {where}", params).fetchone()["n"]
        messages = conn.execute(f"SELECT COUNT(*) AS n FROM message {where}", params).fetchone()["n"]
        calls = conn.execute(
            f"""
            SELECT COUNT(*) AS model_calls,
                   COALESCE(SUM(input_tokens), 0) AS input_tokens,
                   COALESCE(SUM(cached_input_tokens), 0) AS cached_input_tokens,
                   COALESCE(SUM(output_tokens), 0) AS output_tokens,
                   COALESCE(SUM(reasoning_tokens), 0) AS reasoning_tokens,
                   COALESCE(SUM(total_tokens), 0) AS total_tokens
              FROM model_call {where}
            """,
            params,
        ).fetchone()
        tools = conn.execute(
            f"""
            SELECT COUNT(*) AS tool_calls,
                   COALESCE(SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END), 0) AS failed_tool_calls
              FROM tool_call {tool_where}
            """,
            params,
        ).fetchone()
        return {"sessions": sessions, "messages": messages, **dict(calls), **dict(tools)}

    def list_sessions(self, *, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        rows = (
            self._get_connection()
            .execute(
                """
                SELECT s.id, s.ts, s.cwd, s.model_provider, s.model, s.git_branch, s.project_id,
                       (SELECT COUNT(*) FROM message m WHERE m.session_id = s.id) AS messages,
                       (SELECT COUNT(*) FROM model_call c WHERE c.session_id = s.id) AS model_calls,
                       (SELECT COALESCE(SUM(total_tokens), 0) FROM model_call c WHERE c.session_id = s.id)
                           AS total_tokens,
                       (SELECT COUNT(*) FROM tool_call t WHERE t.session_id = s.id) AS tool_calls
                  FROM session s
                 ORDER BY s.ts DESC
                 LIMIT ? OFFSET ?
                """,
                (limit, offset),
            )
            .fetchall()
        )
        return [dict(row) for row in rows]

    def session_detail(self, session_id: str) -> dict[str, Any] | None:
        conn = self._get_connection()
        session = conn.execute("SELECT * FROM session WHERE id = ?", (session_id,)).fetchone()
        if session is None:
            return None
        messages = conn.execute(
            "SELECT id, role, ts, content FROM message WHERE session_id = ? ORDER BY ts, source_line",
            (session_id,),
        ).fetchall()
        calls = conn.execute(
            "SELECT * FROM model_call WHERE session_id = ? ORDER BY ts, source_line",
            (session_id,),
        ).fetchall()
        tools = conn.execute(
            "SELECT * FROM tool_call WHERE session_id = ? ORDER BY start_ts, source_line",
            (session_id,),
        ).fetchall()
        return {
            "session": dict(session),
            "messages": [dict(row) for row in messages],
            "model_calls": [dict(row) for row in calls],
            "tool_calls": [dict(row) for row in tools],
        }

    def model_breakdown(self) -> list[dict[str, Any]]:
        rows = (
            self._get_connection()
            .execute(
                """
                SELECT COALESCE(model, 'unknown') AS model,
                       COUNT(*) AS model_calls,
                       SUM(input_tokens) AS input_tokens,
                       SUM(cached_input_tokens) AS cached_input_tokens,
                       SUM(output_tokens) AS output_tokens,
                       SUM(reasoning_tokens) AS reasoning_tokens,
                       SUM(total_tokens) AS total_tokens
                  FROM model_call
                 GROUP BY COALESCE(model, 'unknown')
                 ORDER BY total_tokens DESC
                """
            )
            .fetchall()
        )
        return [dict(row) for row in rows]

    def list_projects(self, *, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        rows = (
            self._get_connection()
            .execute(
                """
                SELECT p.id, p.name, p.root_path, p.git_remote, p.first_seen_ts, p.last_seen_ts,
                       (SELECT COUNT(*) FROM session s WHERE s.project_id = p.id) AS sessions,
                       (SELECT COALESCE(SUM(c.total_tokens), 0)
                          FROM model_call c JOIN session s ON s.id = c.session_id
                         WHERE s.project_id = p.id) AS total_tokens
                  FROM project p
                 ORDER BY p.last_seen_ts DESC, p.name
                 LIMIT ? OFFSET ?
                """,
                (limit, offset),
            )
            .fetchall()
        )
        return [dict(row) for row in rows]

    def list_tool_calls(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        status: str | None = None,
        tool: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """Tool calls newest first, with the total matching the filters."""
        clauses: list[str] = []
        params: list[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if tool:
            clauses.append("tool_name = ?")
            params.append(tool)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = self._get_connection()
        total = conn.execute(f"SELECT COUNT(*) AS n FROM tool_call {where}", params).fetchone()["n"]
        rows = conn.execute(
            f"SELECT * FROM tool_call {where} ORDER BY start_ts DESC, source_line LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()
        return [dict(row) for row in rows], total

    def count_rows(self, table: str) -> int:
        if table not in {"session", "message", "model_call", "tool_call", "project", "ingest_state"}:
            raise ValueError(f"Unknown table {table!r}")
        return self._get_connection().execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()["n"]


__all__ = ["DB_TIMEOUT", "SQLiteBackend"]
