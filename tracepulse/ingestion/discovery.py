"""Transcript discovery under the Codex sessions directory."""

from __future__ import annotations

import os
import re
from pathlib import Path

from tracepulse.errors import LogDirectoryError

TRANSCRIPT_SUFFIX = ".jsonl"

_ROLLOUT_UUID_RE = re.compile(
    r"([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\.jsonl$",
    re.IGNORECASE,
)


def is_transcript(path: Path | str) -> bool:
    return str(path).endswith(TRANSCRIPT_SUFFIX)


def session_id_from_filename(path: Path) -> str | None:
    """Return the UUID suffix of a ``rollout-<ts>-<uuid>.jsonl`` name."""
    match = _ROLLOUT_UUID_RE.search(path.name)
    return match.group(1).lower() if match else None


def _mtime_key(path: Path) -> tuple[float, str]:
    try:
        return (path.stat().st_mtime, str(path))
    except OSError:
        return (0.0, str(path))


def discover_transcripts(sessions_dir: Path) -> list[Path]:
    """List every transcript file under ``sessions_dir``, oldest first.

    Unreadable subdirectories are skipped.

    Raises:
        LogDirectoryError: If ``sessions_dir`` is missing, not a directory,
            or cannot be listed.
    """
    if not sessions_dir.exists():
        raise LogDirectoryError(f"Log directory not found: {sessions_dir}")
    if not sessions_dir.is_dir():
        raise LogDirectoryError(f"Log directory is not a directory: {sessions_dir}")
    try:
        with os.scandir(sessions_dir):
            pass
    except OSError as exc:
        raise LogDirectoryError(f"Cannot read log directory {sessions_dir}: {exc}") from exc

    found: list[Path] = []
    for dirpath, _dirnames, filenames in os.walk(sessions_dir):
        for name in filenames:
            if name.endswith(TRANSCRIPT_SUFFIX):
                candidate = Path(dirpath) / name
                if candidate.is_file():
                    found.append(candidate)
    return sorted(found, key=_mtime_key)


__all__ = ["TRANSCRIPT_SUFFIX", "discover_transcripts", "is_transcript", "session_id_from_filename"]
