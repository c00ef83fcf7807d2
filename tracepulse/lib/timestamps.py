"""Timestamp helpers.

Transcript lines carry timestamps in several shapes:
- ISO 8601 strings (``2025-01-05T10:00:00.123Z``)
- Unix epoch seconds or milliseconds as int/float
- Unix epoch as a numeric string

Everything is normalized to integer epoch milliseconds in UTC.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], float]
"""Returns the current time in epoch milliseconds."""

# Epoch values below this are seconds, not milliseconds (Sat Mar 3 1973 in ms).
_MS_THRESHOLD = 100_000_000_000


def now_ms() -> float:
    return time.time() * 1000


def _epoch_to_ms(value: float) -> int:
    if abs(value) < _MS_THRESHOLD:
        return round(value * 1000)
    return int(value)


def parse_timestamp_ms(value: str | int | float | None) -> int | None:
    """Parse a timestamp to epoch milliseconds.

    Returns None when the value is missing or unparseable.
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, (int, float)):
            return _epoch_to_ms(float(value))

        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            if text.replace(".", "", 1).isdigit():
                return _epoch_to_ms(float(text))
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return round(parsed.timestamp() * 1000)
    except (ValueError, OSError, OverflowError):
        pass

    return None


def format_ms(ts: int | float | None) -> str | None:
    """Format epoch milliseconds as an ISO 8601 UTC string."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).isoformat(timespec="milliseconds")


__all__ = ["Clock", "format_ms", "now_ms", "parse_timestamp_ms"]
