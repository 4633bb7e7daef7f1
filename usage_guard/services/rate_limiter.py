"""Sliding-window rate limiting policy.

The limiter has no state of its own. Each call site picks its
``(key_prefix, limit, window_ms)``; the window store does the counting and
this layer turns its result into a caller-facing decision with a retry hint.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from usage_guard.adapters.rate_limit.base import AbstractWindowStore
from usage_guard.core.logging import hash_identifier

logger = logging.getLogger(__name__)

ANONYMOUS_IDENTITY = "anonymous"


@dataclass(frozen=True)
class RateLimitDecision:
    """Decision for one request.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window.
        remaining: Requests left in the current window.
        reset_at_ms: UNIX epoch milliseconds when budget frees up.
        retry_after_seconds: Seconds to wait when blocked (>= 1), else None.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    retry_after_seconds: int | None = None

    def headers(self) -> dict[str, str]:
        """Rate-limit metadata for the response, so clients can self-throttle."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at_ms / 1000)),
        }
        if self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


def build_rate_limit_key(key_prefix: str, identity: str | None) -> str:
    """``prefix:identity``; callers without an identity share one anonymous budget."""
    return f"{key_prefix}:{identity or ANONYMOUS_IDENTITY}"


def retry_after_seconds(reset_at_ms: int, now_ms: int) -> int:
    """Whole seconds until reset, never less than 1."""
    return max(1, math.ceil((reset_at_ms - now_ms) / 1000))


class RateLimiter:
    """Policy wrapper around a window store."""

    def __init__(
        self,
        store: AbstractWindowStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    async def enforce(
        self,
        key_prefix: str,
        identity: str | None,
        limit: int,
        window_ms: int,
    ) -> RateLimitDecision:
        """Consume one request from ``identity``'s budget under ``key_prefix``.

        Args:
            key_prefix: Call-site namespace (e.g. ``"generateTeaserPack"``).
            identity: User id, or network address for anonymous callers.
            limit: Requests allowed per window.
            window_ms: Window length in milliseconds.

        Returns:
            RateLimitDecision; a blocked decision carries ``retry_after_seconds``.

        Raises:
            ValueError: If the prefix is empty or limit/window are not positive.
        """
        if not key_prefix:
            raise ValueError("key_prefix must be a non-empty string")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        key = build_rate_limit_key(key_prefix, identity)
        result = await self._store.try_acquire(key, limit, window_ms)

        log_extra = {
            "key_prefix": key_prefix,
            "key_hash": hash_identifier(key),
            "limit": result.limit,
            "remaining": result.remaining,
            "window_ms": window_ms,
        }

        if result.allowed:
            logger.debug("rate_limit.allowed", extra=log_extra)
            return RateLimitDecision(
                allowed=True,
                limit=result.limit,
                remaining=result.remaining,
                reset_at_ms=result.reset_at_ms,
            )

        now_ms = int(self._clock() * 1000)
        retry_after = retry_after_seconds(result.reset_at_ms, now_ms)
        logger.warning("rate_limit.exceeded", extra={**log_extra, "retry_after_s": retry_after})
        return RateLimitDecision(
            allowed=False,
            limit=result.limit,
            remaining=result.remaining,
            reset_at_ms=result.reset_at_ms,
            retry_after_seconds=retry_after,
        )
