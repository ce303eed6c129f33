"""
Time-to-live cache for externally fetched records.

The enrichment workload is "don't refetch data we fetched a few minutes
ago". Entity lists are small and fixed, so the cache is bounded by *time*
only: no LRU, no size cap, no background sweeper.

Manifesto:
    - **TTL only:** An entry is live while ``now < expires_at``
    - **Lazy eviction:** Expired entries are dropped on the read that finds them
    - **Wholesale writes:** ``set`` always replaces; entries are never mutated
    - **Explicit lifetime:** Constructed once at startup and injected,
      not a module-level global

Architecture:
    ::

        CacheBackend (Protocol)
        └── TTLCache    single-process, time-bounded

        API: get(key) → value | None
             set(key, value, ttl_seconds=None)
             delete(key) / exists(key) / clear() / size()
             get_stale(key) → StaleEntry | None   (never evicts)
             stats() → CacheStats

Examples:
    >>> cache = TTLCache(default_ttl_seconds=1800)
    >>> cache.set(cache_key("sec-edgar", "RKLB"), {"ticker": "RKLB"})
    >>> cache.get("sec-edgar:rklb")
    {'ticker': 'RKLB'}

Guardrails:
    ❌ DON'T: Share one key across sources
    ✅ DO: Build keys with :func:`cache_key` (``source:qualifier``)

    ❌ DON'T: Treat ``None`` from ``get`` as "entity does not exist"
    ✅ DO: Treat it as "not cached (or expired)" and fetch

Tags:
    cache, ttl, in-memory, enrichment, lazy-eviction

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

DEFAULT_TTL_SECONDS = 1800.0


def cache_key(source: str, qualifier: str) -> str:
    """Build a collision-free cache key: ``source:qualifier`` (qualifier lowercased)."""
    return f"{source}:{qualifier.lower()}"


class CacheBackend(Protocol):
    """Protocol for cache backend implementations."""

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` if missing or expired."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        """Store ``value`` under ``key``, replacing any previous entry."""
        ...

    def delete(self, key: str) -> None:
        ...

    def exists(self, key: str) -> bool:
        ...

    def clear(self) -> None:
        ...


@dataclass(frozen=True)
class CacheEntry:
    """One cached value. Replaced wholesale, never mutated."""

    key: str
    value: Any
    stored_at: float
    expires_at: float


@dataclass(frozen=True)
class StaleEntry:
    """A cached value returned regardless of expiry."""

    value: Any
    is_stale: bool
    stored_at: float


@dataclass(frozen=True)
class CacheStats:
    """Hit/miss counters for monitoring."""

    size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float | None:
        """Hit rate as a fraction, ``None`` before the first lookup."""
        total = self.hits + self.misses
        if total == 0:
            return None
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
        }


class TTLCache:
    """In-memory key → value cache with per-entry expiration.

    Attributes:
        default_ttl_seconds: TTL applied when ``set`` is called without one.

    Example:
        cache = TTLCache(default_ttl_seconds=1800)
        cache.set("fcc-licenses:spacex", summary, ttl_seconds=600)
        summary = cache.get("fcc-licenses:spacex")
    """

    def __init__(
        self,
        *,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            default_ttl_seconds: Default TTL for ``set`` calls without one.
            clock: Monotonic time source in seconds (injectable for tests).
        """
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self._store: dict[str, CacheEntry] = {}
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._hits = 0
        self._misses = 0

    @property
    def default_ttl_seconds(self) -> float:
        return self._default_ttl

    def get(self, key: str) -> Any | None:
        """Retrieve a live value; expired entries are evicted here."""
        entry = self._store.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self._clock() >= entry.expires_at:
            del self._store[key]
            self._misses += 1
            return None

        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        """Store a value, replacing any existing entry for ``key``."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        if ttl <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl}")
        now = self._clock()
        self._store[key] = CacheEntry(key=key, value=value, stored_at=now, expires_at=now + ttl)

    def get_stale(self, key: str) -> StaleEntry | None:
        """Return the value even if expired. Does not evict or count as a hit."""
        entry = self._store.get(key)
        if entry is None:
            return None
        return StaleEntry(
            value=entry.value,
            is_stale=self._clock() >= entry.expires_at,
            stored_at=entry.stored_at,
        )

    def delete(self, key: str) -> None:
        """Remove a key. No-op if missing."""
        self._store.pop(key, None)

    def exists(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        entry = self._store.get(key)
        if entry is None:
            return False
        if self._clock() >= entry.expires_at:
            del self._store[key]
            return False
        return True

    def clear(self) -> None:
        """Remove all keys and reset hit/miss counters."""
        self._store.clear()
        self._hits = 0
        self._misses = 0

    def size(self) -> int:
        """Number of stored entries, including expired ones not yet read."""
        return len(self._store)

    def stats(self) -> CacheStats:
        return CacheStats(size=len(self._store), hits=self._hits, misses=self._misses)


__all__ = [
    "DEFAULT_TTL_SECONDS",
    "CacheBackend",
    "CacheEntry",
    "CacheStats",
    "StaleEntry",
    "TTLCache",
    "cache_key",
]
