"""Redis-backed sliding-window limiter (durable, cross-instance).

Each key is a sorted set of attempt timestamps. A single Lua script trims
entries older than the window, counts what is left, conditionally records
the new attempt and refreshes the key expiry, so concurrent instances never
observe a half-applied update.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable

from redis.asyncio import Redis

from usage_guard.adapters.rate_limit.base import WindowResult
from usage_guard.core.config import RedisSettings

logger = logging.getLogger(__name__)


# KEYS[1] = limiter key
# ARGV = now_ms, window_ms, limit, member
# Returns {allowed (0/1), count, reset_at_ms}
SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, 0, now - window)
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
    redis.call('ZADD', key, now, member)
    count = count + 1
    allowed = 1
end
redis.call('PEXPIRE', key, window)

local reset_at = now + window
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if oldest[2] then
    reset_at = tonumber(oldest[2]) + window
end
return {allowed, count, reset_at}
"""


def create_redis_client(redis_settings: RedisSettings) -> Redis | None:
    """Build the shared Redis client, or None when unconfigured.

    Never raises on missing or malformed configuration; rate limiting then
    runs on the in-process fallback only.
    """

    if not redis_settings.url:
        logger.warning(
            "window_store.durable_disabled",
            extra={"reason": "redis_url_not_configured"},
        )
        return None

    timeout_s = redis_settings.timeout_ms / 1000
    try:
        return Redis.from_url(
            redis_settings.url,
            socket_timeout=timeout_s,
            socket_connect_timeout=timeout_s,
        )
    except ValueError as exc:
        logger.error(
            "window_store.durable_disabled",
            extra={"reason": "invalid_redis_url", "error_msg": str(exc)},
        )
        return None


class RedisSlidingWindowLimiter:
    """Sliding-window limiter for one ``(limit, window_ms)`` configuration.

    Instances are meant to be cached per configuration and reused across
    requests; the registered script object is shared by all keys.
    """

    def __init__(
        self,
        client: Redis,
        *,
        limit: int,
        window_ms: int,
        prefix: str = "usage_guard",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        self._client = client
        self._limit = limit
        self._window_ms = window_ms
        self._prefix = prefix
        self._clock = clock
        self._script = client.register_script(SLIDING_WINDOW_LUA)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_ms(self) -> int:
        return self._window_ms

    async def acquire(self, key: str) -> WindowResult:
        """Run the sliding-window script for ``key``.

        Raises:
            redis.exceptions.RedisError: Propagated; the caller decides how
                to degrade.
        """
        now_ms = int(self._clock() * 1000)
        member = f"{now_ms}-{uuid.uuid4().hex}"
        raw: Any = await self._script(
            keys=[f"{self._prefix}:{key}"],
            args=[now_ms, self._window_ms, self._limit, member],
        )
        allowed, count, reset_at_ms = (int(v) for v in raw)

        return WindowResult(
            allowed=bool(allowed),
            limit=self._limit,
            remaining=max(0, self._limit - count),
            reset_at_ms=reset_at_ms,
        )
