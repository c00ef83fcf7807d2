"""Stable record identifiers.

Ids combine the session id, the line number and a hash of the normalized
record payload. The file path never takes part, so renaming or moving a
transcript keeps every id stable.
"""

from __future__ import annotations

from typing import Any

from tracepulse.lib.hashing import hash_payload, hash_text

ID_LENGTH = 24


def record_id(session_id: str, line: int, payload: dict[str, Any]) -> str:
    return hash_text(f"{session_id}:{line}:{hash_payload(payload)}", ID_LENGTH)


def fallback_session_id(first_line: bytes) -> str:
    """Session id for a transcript with no header and no UUID in its name."""
    return f"anon-{hash_text(first_line.decode('utf-8', errors='replace'), ID_LENGTH)}"


__all__ = ["ID_LENGTH", "fallback_session_id", "record_id"]
