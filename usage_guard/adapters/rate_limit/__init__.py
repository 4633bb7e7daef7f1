"""Rate limiting window stores.

A durable, cross-instance store (Redis sliding window) is tried first and an
in-process fallback takes over when it is unconfigured or failing. The
services layer only sees ``AbstractWindowStore``.
"""

from usage_guard.adapters.rate_limit.base import AbstractWindowStore, WindowResult
from usage_guard.adapters.rate_limit.fallback import FallbackWindowStore
from usage_guard.adapters.rate_limit.in_memory import InMemoryWindowStore
from usage_guard.adapters.rate_limit.redis_sliding_window import (
    RedisSlidingWindowLimiter,
    create_redis_client,
)

__all__ = [
    "AbstractWindowStore",
    "FallbackWindowStore",
    "InMemoryWindowStore",
    "RedisSlidingWindowLimiter",
    "WindowResult",
    "create_redis_client",
]
