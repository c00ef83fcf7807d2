"""Central JSON utilities using orjson."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any, Callable

import orjson

JSONDecodeError = orjson.JSONDecodeError


def _default_encoder(user_default: Callable[[Any], Any] | None = None) -> Callable[[Any], Any]:
    """Create a JSON encoder that handles Decimal and Path values."""

    def _encoder(obj: Any) -> Any:
        if user_default is not None:
            try:
                return user_default(obj)
            except TypeError:
                pass
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, Path):
            return str(obj)
        raise TypeError(f"Object of type {obj.__class__.__name__} is not JSON serializable")

    return _encoder


def dumps(obj: Any, *, default: Callable[[Any], Any] | None = None, option: int | None = None) -> str:
    """Dump object to JSON string."""
    return orjson.dumps(obj, default=_default_encoder(default), option=option).decode("utf-8")


def dumps_sorted(obj: Any) -> str:
    """Dump with sorted keys; equal mappings always produce equal strings."""
    return dumps(obj, option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS)


def loads(obj: str | bytes) -> Any:
    """Load object from JSON string or bytes."""
    return orjson.loads(obj)


__all__ = ["JSONDecodeError", "dumps", "dumps_sorted", "loads"]
