"""Engine assembly.

Builds the rate limiter, quota tracker, transactional enforcer and totals
ledger over shared backends. The FastAPI app holds one engine on
``app.state``; tests build their own with in-process stores.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from redis.asyncio import Redis

from usage_guard.adapters.rate_limit.fallback import FallbackWindowStore, build_limiter_factory
from usage_guard.adapters.rate_limit.in_memory import InMemoryWindowStore
from usage_guard.adapters.rate_limit.redis_sliding_window import create_redis_client
from usage_guard.adapters.store.base import AbstractDocumentStore
from usage_guard.adapters.store.factory import create_document_store
from usage_guard.core.config import Settings
from usage_guard.services.plan_limits import PlanLimitRegistry, load_plan_limits
from usage_guard.services.quota_enforcer import TransactionalQuotaEnforcer
from usage_guard.services.quota_tracker import MonthlyQuotaTracker
from usage_guard.services.rate_limiter import RateLimiter
from usage_guard.services.usage_totals import UsageTotalsRecorder
from usage_guard.utils.simple_cache import TTLCache

logger = logging.getLogger(__name__)


@dataclass
class QuotaEngine:
    """Everything a request handler needs to gate costly actions."""

    plan_limits: PlanLimitRegistry
    rate_limiter: RateLimiter
    quota_tracker: MonthlyQuotaTracker
    enforcer: TransactionalQuotaEnforcer
    usage_totals: UsageTotalsRecorder
    document_store: AbstractDocumentStore
    redis_client: Redis | None = None

    async def aclose(self) -> None:
        await self.quota_tracker.drain()
        await self.document_store.aclose()
        if self.redis_client is not None:
            await self.redis_client.aclose()


def build_engine(
    settings: Settings,
    *,
    document_store: AbstractDocumentStore | None = None,
    redis_client: Redis | None = None,
    plan_limits: PlanLimitRegistry | None = None,
) -> QuotaEngine:
    """Wire the engine from settings; explicit arguments override the configured backends."""
    store = document_store if document_store is not None else create_document_store(settings.mongo)
    if redis_client is None:
        redis_client = create_redis_client(settings.redis)
    registry = plan_limits if plan_limits is not None else load_plan_limits(
        settings.quota.plan_limits_path, admin_role=settings.app.admin_role
    )

    window_store = FallbackWindowStore(
        limiter_factory=build_limiter_factory(redis_client, prefix=settings.redis.key_prefix),
        fallback=InMemoryWindowStore(max_entries=settings.quota.fallback_max_entries),
        limiter_cache=TTLCache(ttl_seconds=None, max_entries=settings.quota.limiter_cache_size),
        timeout_seconds=settings.redis.timeout_ms / 1000,
    )

    logger.info(
        "engine.built",
        extra={
            "durable_window_store": redis_client is not None,
            "document_store": type(store).__name__,
            "plan_limits_version": registry.current.version,
        },
    )

    return QuotaEngine(
        plan_limits=registry,
        rate_limiter=RateLimiter(window_store),
        quota_tracker=MonthlyQuotaTracker(
            store, registry, collection=settings.quota.usage_collection
        ),
        enforcer=TransactionalQuotaEnforcer(
            store, registry, collection=settings.quota.users_collection
        ),
        usage_totals=UsageTotalsRecorder(
            store, registry, collection=settings.quota.totals_collection
        ),
        document_store=store,
        redis_client=redis_client,
    )
