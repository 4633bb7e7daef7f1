"""In-process window store used when the durable store is unavailable.

Notes:
- Per-process only: under horizontal scaling each instance enforces its own
  budget, so the effective limit becomes ``limit x instance_count``.
- State lives in an injected ``TTLCache``; entries expire with their window
  and the cache is bounded, so abandoned identities cannot grow memory.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from usage_guard.adapters.rate_limit.base import AbstractWindowStore, WindowResult
from usage_guard.utils.simple_cache import TTLCache


@dataclass
class _WindowState:
    count: int
    reset_at_ms: int


class InMemoryWindowStore(AbstractWindowStore):
    """Fixed window per key, opened by the key's first attempt.

    The window resets once ``now > reset_at_ms``. Denied attempts do not
    consume budget.
    """

    def __init__(
        self,
        cache: TTLCache[_WindowState] | None = None,
        *,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the fallback store.

        Args:
            cache: Backing cache; built with ``max_entries`` when omitted.
            max_entries: Bound for the default cache.
            clock: Time source returning UNIX time in seconds.
        """
        self._clock = clock
        self._cache: TTLCache[_WindowState] = (
            cache if cache is not None else TTLCache(ttl_seconds=None, max_entries=max_entries, clock=clock)
        )
        self._lock = threading.Lock()

    @property
    def cache(self) -> TTLCache[_WindowState]:
        return self._cache

    async def try_acquire(self, key: str, limit: int, window_ms: int) -> WindowResult:
        if not key:
            raise ValueError("key must be a non-empty string")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        now_ms = int(self._clock() * 1000)

        with self._lock:
            state = self._cache.get(key)
            if state is None or now_ms > state.reset_at_ms:
                state = _WindowState(count=0, reset_at_ms=now_ms + window_ms)

            allowed = state.count < limit
            if allowed:
                state.count += 1

            # Keep the entry one extra second so "now > reset" is observed
            # before the sweep drops it.
            ttl_seconds = (state.reset_at_ms - now_ms) / 1000 + 1
            self._cache.set(key, state, ttl_seconds=ttl_seconds)

            return WindowResult(
                allowed=allowed,
                limit=limit,
                remaining=max(0, limit - state.count),
                reset_at_ms=state.reset_at_ms,
            )
