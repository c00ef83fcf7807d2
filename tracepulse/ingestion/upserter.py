"""Parse one transcript file and upsert its records when it changed."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ValidationError

from tracepulse.config import Settings, SignatureMode
from tracepulse.errors import DatabaseError, TranscriptParseError
from tracepulse.ingestion.jsonl import read_jsonl
from tracepulse.ingestion.parsers import parse_transcript
from tracepulse.ingestion.projects import attach_projects
from tracepulse.ingestion.tui_log import parse_tui_log, read_tui_log
from tracepulse.lib.hashing import hash_file
from tracepulse.lib.log import get_logger
from tracepulse.storage.backend import SQLiteBackend
from tracepulse.storage.ingest_state import ChangeTrackingStore
from tracepulse.storage.store import FileSignature

logger = get_logger(__name__)


class FileIngestResult(BaseModel):
    path: str
    changed: bool
    error: str | None = None
    records: dict[str, int] = {}
    skipped_partial_line: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None


def compute_signature(path: Path, mode: SignatureMode = "stat") -> FileSignature:
    """Fingerprint a file; ``stat`` mode never opens it.

    Raises:
        OSError: If the file cannot be stat'ed (or read, in content mode).
    """
    stat = path.stat()
    content_hash = hash_file(path) if mode == "content" else None
    return FileSignature(mtime_ns=stat.st_mtime_ns, size_bytes=stat.st_size, content_hash=content_hash)


class TranscriptIngester:
    """Turns changed transcript files into stored records.

    Failures are returned as data on the result, never raised, except
    when the change-tracking store itself cannot be written.
    """

    def __init__(
        self,
        backend: SQLiteBackend,
        tracking: ChangeTrackingStore,
        *,
        signature_mode: SignatureMode = "stat",
        retry_failed: bool = True,
        store_content: bool = False,
        inspect_git: bool = True,
    ) -> None:
        self._backend = backend
        self._tracking = tracking
        self._signature_mode = signature_mode
        self._retry_failed = retry_failed
        self._store_content = store_content
        self._inspect_git = inspect_git

    @classmethod
    def from_settings(
        cls, settings: Settings, backend: SQLiteBackend, tracking: ChangeTrackingStore
    ) -> TranscriptIngester:
        return cls(
            backend,
            tracking,
            signature_mode=settings.signature_mode,
            retry_failed=settings.retry_failed,
            store_content=settings.store_content,
            inspect_git=settings.inspect_git,
        )

    def _check(self, key: str, path: Path, force: bool) -> FileSignature | FileIngestResult:
        """The file's signature when it needs ingesting, else the result to return."""
        try:
            signature = compute_signature(path, self._signature_mode)
        except OSError as exc:
            return self._fail(key, f"Cannot stat file: {exc}", None)
        if not force and not self._tracking.is_changed(key, signature):
            return FileIngestResult(path=key, changed=False)
        return signature

    def ingest_file(self, path: Path, *, force: bool = False) -> FileIngestResult:
        """Ingest ``path`` if its signature changed (or ``force`` is set)."""
        key = str(path)
        signature = self._check(key, path, force)
        if isinstance(signature, FileIngestResult):
            return signature

        try:
            read = read_jsonl(path)
            parsed = parse_transcript(
                read,
                path=path,
                fallback_ts=signature.mtime_ns // 1_000_000,
                store_content=self._store_content,
            )
            parsed = attach_projects(parsed, inspect_git=self._inspect_git)
            counts = self._backend.save_transcript(parsed)
        except TranscriptParseError as exc:
            return self._fail(key, str(exc), signature)
        except ValidationError as exc:
            return self._fail(key, f"invalid record: {exc.errors()[0]['msg']}", signature)
        except (DatabaseError, OSError) as exc:
            return self._fail(key, str(exc), signature)

        self._tracking.mark_ingested(key, signature)
        if parsed.skipped_partial_line:
            logger.debug("partial_line_skipped", path=key)
        return FileIngestResult(
            path=key,
            changed=True,
            records=counts,
            skipped_partial_line=parsed.skipped_partial_line,
        )

    def ingest_tool_log(self, path: Path, *, force: bool = False) -> FileIngestResult:
        """Re-read the whole TUI log if it changed and replace its tool calls."""
        key = str(path)
        signature = self._check(key, path, force)
        if isinstance(signature, FileIngestResult):
            return signature

        try:
            tool_calls = parse_tui_log(read_tui_log(path), key)
            counts = self._backend.save_tool_log(key, tool_calls)
        except ValidationError as exc:
            return self._fail(key, f"invalid record: {exc.errors()[0]['msg']}", signature)
        except (DatabaseError, OSError) as exc:
            return self._fail(key, str(exc), signature)

        self._tracking.mark_ingested(key, signature)
        logger.debug("tool_log_ingested", path=key, tool_calls=counts["tool_calls"])
        return FileIngestResult(path=key, changed=True, records=counts)

    def _fail(self, key: str, error: str, signature: FileSignature | None) -> FileIngestResult:
        logger.warning("file_ingest_failed", path=key, error=error)
        if self._retry_failed or signature is None:
            self._tracking.mark_failed(key, error)
        else:
            self._tracking.mark_failed(key, error, signature=signature)
        return FileIngestResult(path=key, changed=True, error=error)


__all__ = ["FileIngestResult", "TranscriptIngester", "compute_signature"]
