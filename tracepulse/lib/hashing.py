"""Hashing helpers for record ids and file signatures."""

from __future__ import annotations

import hashlib
from pathlib import Path

from tracepulse.lib.json import dumps_sorted


def hash_text(text: str, length: int | None = None) -> str:
    """SHA-256 hex digest of UTF-8 text, optionally truncated."""
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return digest[:length] if length else digest


def hash_payload(payload: object, length: int = 24) -> str:
    """Hash a JSON-serializable object independent of key order."""
    return hash_text(dumps_sorted(payload), length)


def hash_file(path: Path) -> str:
    """Hash file contents to full SHA-256 hex digest (streams 1MB chunks)."""
    hasher = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


__all__ = ["hash_text", "hash_payload", "hash_file"]
