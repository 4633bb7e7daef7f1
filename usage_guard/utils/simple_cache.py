"""In-memory TTL cache with LRU eviction.

Backs the process-local pieces of the engine: the rate-limit fallback
windows and the per-configuration durable limiter instances. Both are
injected explicitly so their non-distributed nature stays visible.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass
class CacheItem(Generic[V]):
    """Container for cached values with expiration metadata."""

    value: V
    expires_at: float | None


class TTLCache(Generic[V]):
    """Thread-safe, in-memory TTL cache with LRU eviction.

    Attributes:
        ttl_seconds: Default time-to-live (None keeps entries until evicted).
        max_entries: Maximum number of cached items (None for unlimited).
        sweep_every: Writes between full sweeps of expired entries. Reads
            never return an expired entry regardless.
    """

    def __init__(
        self,
        ttl_seconds: float | None = 3600,
        max_entries: int | None = 1024,
        *,
        sweep_every: int = 128,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if sweep_every < 1:
            raise ValueError("sweep_every must be >= 1")
        self._sweep_every = sweep_every
        self._writes_since_sweep = 0
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, CacheItem[V]] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"TTLCache(ttl_seconds={self._ttl}, max_entries={self._max_entries}, "
            f"size={len(self._store)}, hits={self._hits}, misses={self._misses}, "
            f"evictions={self._evictions})"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def get(self, key: str) -> V | None:
        """Retrieve a cached value if it exists and is not expired."""

        with self._lock:
            item = self._store.get(key)
            if item is None:
                self._misses += 1
                return None

            if self._is_expired(item):
                self._evict_single(key)
                self._misses += 1
                return None

            self._hits += 1
            self._store.move_to_end(key)
            return item.value

    def set(self, key: str, value: V, *, ttl_seconds: float | None = None) -> None:
        """Store a value, evicting past capacity and periodically sweeping expired entries.

        Args:
            key: Cache key.
            value: Value to store.
            ttl_seconds: Per-entry TTL overriding the cache default.
        """

        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._writes_since_sweep += 1
            if self._writes_since_sweep >= self._sweep_every:
                self._evict_expired_locked()
            expires_at = None if ttl is None else self._clock() + ttl
            self._store[key] = CacheItem(value=value, expires_at=expires_at)
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | float | None]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "ttl_seconds": self._ttl,
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _evict_single(self, key: str) -> None:
        if key in self._store:
            self._store.pop(key, None)
            self._evictions += 1

    def _evict_expired_locked(self) -> None:
        self._writes_since_sweep = 0
        expired_keys = [k for k, item in self._store.items() if self._is_expired(item)]
        for key in expired_keys:
            self._evict_single(key)
        if expired_keys:
            logger.debug("cache.swept", extra={"expired": len(expired_keys)})

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            self._store.popitem(last=False)
            self._evictions += 1

    def _is_expired(self, item: CacheItem[V]) -> bool:
        return item.expires_at is not None and self._clock() > item.expires_at
