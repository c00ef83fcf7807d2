"""Per-file change tracking for transcript ingestion.

One row per known transcript file. A file needs reprocessing when no row
exists or its stored signature differs from the current one.
"""

from __future__ import annotations

from tracepulse.lib.timestamps import Clock, now_ms
from tracepulse.storage.backend import SQLiteBackend
from tracepulse.storage.store import FileIngestState, FileSignature


class ChangeTrackingStore:
    """Remembers which transcript files were ingested, and in what state."""

    def __init__(self, backend: SQLiteBackend, clock: Clock | None = None) -> None:
        self._backend = backend
        self._clock = clock or now_ms

    def _now(self) -> int:
        return int(self._clock())

    def get(self, path: str) -> FileIngestState | None:
        return self._backend.get_ingest_state(path)

    def is_changed(self, path: str, signature: FileSignature) -> bool:
        state = self.get(path)
        if state is None or state.signature is None:
            return True
        stored = state.signature
        if stored.content_hash and signature.content_hash:
            # Content signatures ignore mtime so a touched file is not reparsed.
            return (stored.size_bytes, stored.content_hash) != (signature.size_bytes, signature.content_hash)
        return stored != signature

    def mark_ingested(self, path: str, signature: FileSignature, error: str | None = None) -> FileIngestState:
        """Store the signature the file was processed at.

        ``error`` is kept alongside the signature when a failing file
        should not be retried until it changes again.
        """
        now = self._now()
        previous = self.get(path)
        last_ingested_at = now if error is None else (previous.last_ingested_at if previous else None)
        state = FileIngestState(
            path=path,
            signature=signature,
            last_ingested_at=last_ingested_at,
            last_error=error,
            updated_at=now,
        )
        self._backend.upsert_ingest_state(state)
        return state

    def mark_failed(self, path: str, error: str, signature: FileSignature | None = None) -> FileIngestState:
        """Record an error without advancing the stored signature.

        When ``signature`` is given it replaces the stored one, which stops
        the file from being retried until it changes.
        """
        if signature is not None:
            return self.mark_ingested(path, signature, error=error)
        previous = self.get(path)
        state = FileIngestState(
            path=path,
            signature=previous.signature if previous else None,
            last_ingested_at=previous.last_ingested_at if previous else None,
            last_error=error,
            updated_at=self._now(),
        )
        self._backend.upsert_ingest_state(state)
        return state

    def forget(self, path: str) -> bool:
        return self._backend.delete_ingest_state(path)

    def known_paths(self) -> set[str]:
        return set(self._backend.ingest_state_paths())

    def list_states(self, *, limit: int = 50, offset: int = 0, search: str | None = None) -> list[FileIngestState]:
        return self._backend.list_ingest_states(limit=limit, offset=offset, search=search)

    def count(self, search: str | None = None) -> int:
        return self._backend.ingest_state_summary(search)["total_files"]

    def summary(self, search: str | None = None) -> dict[str, int | None]:
        return self._backend.ingest_state_summary(search)

    def last_updated_at(self) -> int | None:
        """Latest time any file was successfully ingested."""
        return self._backend.ingest_state_summary()["last_ingested_at"]


__all__ = ["ChangeTrackingStore"]
