"""Data models for the ingestion pipeline."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

from tracepulse.storage.store import FileIngestState

IngestMode = Literal["full", "incremental"]
CoordinatorState = Literal["idle", "running"]


class FileError(BaseModel):
    path: str
    message: str


class IngestRun(BaseModel):
    run_id: str
    mode: IngestMode
    started_at: int
    finished_at: int | None = None
    files_scanned: int = 0
    # Files whose signature changed (or every file in full mode), failures included.
    files_changed: int = 0
    files_ingested: int = 0
    files_failed: int = 0
    files_missing: int = 0
    records: dict[str, int] = {}
    errors: list[FileError] = []
    error: str | None = None
    duration_ms: int | None = None

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    def summary(self) -> dict[str, Any]:
        """Counts only; the per-file error list is left out."""
        data = self.model_dump(exclude={"errors"})
        data["error_count"] = len(self.errors)
        return data


class CoordinatorStatus(BaseModel):
    state: CoordinatorState
    last_run: IngestRun | None = None
    last_run_at: int | None = None


class IngestStateListing(BaseModel):
    files: list[FileIngestState]
    total: int
    limit: int
    offset: int
    failed_files: int = 0
    last_ingested_at: int | None = None


__all__ = [
    "CoordinatorState",
    "CoordinatorStatus",
    "FileError",
    "IngestMode",
    "IngestRun",
    "IngestStateListing",
]
