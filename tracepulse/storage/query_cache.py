"""Time-bounded memoization for expensive read queries.

Entries are evicted lazily on lookup once expired; there is no background
sweep. The cache knows nothing about ingestion: callers either let entries
age out or call ``invalidate()`` after a run.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from tracepulse.lib.json import dumps_sorted
from tracepulse.lib.timestamps import Clock, now_ms

T = TypeVar("T")

DEFAULT_TTL_MS = 30_000


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


def query_key(name: str, **params: Any) -> str:
    """Build a cache key from a query name and its parameters.

    Parameter order does not matter and ``None`` values are dropped, so
    ``query_key("x", a=1, b=None)`` equals ``query_key("x", a=1)``.
    """
    normalized = {key: value for key, value in params.items() if value is not None}
    if not normalized:
        return name
    return f"{name}:{dumps_sorted(normalized)}"


class QueryCache:
    def __init__(self, default_ttl_ms: int = DEFAULT_TTL_MS, clock: Clock | None = None) -> None:
        self._default_ttl_ms = default_ttl_ms
        self._clock = clock or now_ms
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _lookup(self, key: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry

    def cached_query(self, key: str, compute: Callable[[], T], ttl_ms: int | None = None) -> T:
        """Return the live cached value for ``key`` or compute and store it.

        Exceptions from ``compute`` propagate and leave nothing cached.
        """
        entry = self._lookup(key)
        if entry is not None:
            return entry.value

        value = compute()
        ttl = self._default_ttl_ms if ttl_ms is None else ttl_ms
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
        return value

    def invalidate(self, key: str | None = None) -> None:
        """Drop one entry, or every entry when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"entries": len(self._entries), "hits": self._hits, "misses": self._misses}


__all__ = ["CacheEntry", "DEFAULT_TTL_MS", "QueryCache", "query_key"]
