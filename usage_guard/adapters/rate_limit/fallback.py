"""Window store adapter: durable path first, in-process fallback second.

The adapter never raises on backend trouble. An unconfigured durable store,
a Redis error or a timeout all resolve to the fallback decision, trading
strict cross-instance correctness for availability.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from usage_guard.adapters.rate_limit.base import AbstractWindowStore, WindowResult
from usage_guard.adapters.rate_limit.in_memory import InMemoryWindowStore
from usage_guard.adapters.rate_limit.redis_sliding_window import RedisSlidingWindowLimiter
from usage_guard.core.logging import hash_identifier
from usage_guard.utils.simple_cache import TTLCache

logger = logging.getLogger(__name__)

LimiterFactory = Callable[[int, int], RedisSlidingWindowLimiter | None]


class FallbackWindowStore(AbstractWindowStore):
    """Compose a durable limiter per configuration with a local fallback."""

    def __init__(
        self,
        *,
        limiter_factory: LimiterFactory,
        fallback: InMemoryWindowStore,
        limiter_cache: TTLCache[RedisSlidingWindowLimiter] | None = None,
        timeout_seconds: float = 0.5,
    ) -> None:
        """Initialize the adapter.

        Args:
            limiter_factory: Builds a durable limiter for ``(limit, window_ms)``;
                returns None when the durable store is unavailable.
            fallback: In-process store used whenever the durable path cannot answer.
            limiter_cache: Holds one durable limiter per configuration.
            timeout_seconds: Budget for one durable call.
        """
        self._limiter_factory = limiter_factory
        self._fallback = fallback
        self._limiters: TTLCache[RedisSlidingWindowLimiter] = (
            limiter_cache if limiter_cache is not None else TTLCache(ttl_seconds=None, max_entries=64)
        )
        self._timeout_seconds = timeout_seconds

    def _get_limiter(self, limit: int, window_ms: int) -> RedisSlidingWindowLimiter | None:
        cache_key = f"{limit}:{window_ms}"
        limiter = self._limiters.get(cache_key)
        if limiter is None:
            limiter = self._limiter_factory(limit, window_ms)
            if limiter is not None:
                self._limiters.set(cache_key, limiter)
        return limiter

    async def try_acquire(self, key: str, limit: int, window_ms: int) -> WindowResult:
        limiter = self._get_limiter(limit, window_ms)
        if limiter is None:
            return await self._fallback.try_acquire(key, limit, window_ms)

        try:
            return await asyncio.wait_for(limiter.acquire(key), timeout=self._timeout_seconds)
        except Exception as exc:
            logger.warning(
                "window_store.fallback",
                extra={
                    "key_hash": hash_identifier(key),
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return await self._fallback.try_acquire(key, limit, window_ms)


def build_limiter_factory(client, *, prefix: str) -> LimiterFactory:
    """Return a factory bound to ``client``; it yields None when client is None."""

    def factory(limit: int, window_ms: int) -> RedisSlidingWindowLimiter | None:
        if client is None:
            return None
        return RedisSlidingWindowLimiter(client, limit=limit, window_ms=window_ms, prefix=prefix)

    return factory
