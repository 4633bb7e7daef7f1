"""Monthly quota tracking (soft budget).

One generic tracker serves every resource type. Usage is kept as one
document per ``(identity, resource_type, month)``; old months are never
touched again and form an append-only ledger.

Checking and recording are separate calls, so two concurrent requests can
both pass ``can_consume`` for the last unit. That overshoot is accepted for
the resources tracked here; hard caps go through
``TransactionalQuotaEnforcer`` instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from usage_guard.adapters.store.base import AbstractDocumentStore, compound_id
from usage_guard.core.errors import StoreUnavailableError
from usage_guard.core.logging import hash_identifier
from usage_guard.services.plan_limits import UNLIMITED, PlanLimitRegistry
from usage_guard.utils.month_key import month_key, utc_now

logger = logging.getLogger(__name__)


class BackendErrorPolicy(str, Enum):
    """What a check returns when the store cannot answer."""

    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class UsageStats:
    count: int
    limit: int
    remaining: int
    month: str


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    remaining: int
    limit: int
    month: str
    used: int = 0


def usage_record_id(identity: str, resource_type: str, month: str) -> str:
    return compound_id(identity, resource_type, month)


def coerce_count(value: object) -> int:
    try:
        count = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    return max(0, count)


class MonthlyQuotaTracker:
    """Per-(identity, resource_type) consumption over calendar-month buckets."""

    def __init__(
        self,
        store: AbstractDocumentStore,
        plan_limits: PlanLimitRegistry,
        *,
        collection: str = "usage_records",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._plan_limits = plan_limits
        self._collection = collection
        self._clock = clock
        self._pending: set[asyncio.Task[None]] = set()

    async def _load_count(self, identity: str, resource_type: str, month: str) -> int | None:
        """Stored count for the month, or None when no record exists yet."""
        doc = await self._store.get(self._collection, usage_record_id(identity, resource_type, month))
        if doc is None:
            return None
        return coerce_count(doc.get("count"))

    def _materialize_later(self, identity: str, resource_type: str, month: str) -> None:
        """Create the zero-count record in the background; the read does not wait for it."""
        task = asyncio.create_task(self._materialize(identity, resource_type, month))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _materialize(self, identity: str, resource_type: str, month: str) -> None:
        now = self._clock()
        try:
            await self._store.ensure(
                self._collection,
                usage_record_id(identity, resource_type, month),
                {
                    "identity": identity,
                    "resource_type": resource_type,
                    "month": month,
                    "count": 0,
                    "last_reset": now,
                    "last_updated": now,
                },
            )
        except StoreUnavailableError:
            logger.info(
                "quota.materialize_skipped",
                extra={"identity_hash": hash_identifier(identity), "resource_type": resource_type},
            )

    async def get_stats(
        self,
        identity: str,
        resource_type: str,
        plan: str | None,
        role: str | None = None,
    ) -> UsageStats:
        """Current month's usage. A missing record reads as ``count = 0``.

        Backend errors degrade to a zero count rather than raising.
        """
        table = self._plan_limits.current
        month = month_key(self._clock())
        limit = table.resolve_limit(resource_type, plan, role)

        if table.is_admin(role) and not table.resource(resource_type).record_admin_usage:
            return UsageStats(count=0, limit=UNLIMITED, remaining=UNLIMITED, month=month)

        try:
            count = await self._load_count(identity, resource_type, month)
        except StoreUnavailableError:
            logger.warning(
                "quota.stats_failed",
                extra={"identity_hash": hash_identifier(identity), "resource_type": resource_type},
            )
            count = 0
        else:
            if count is None:
                self._materialize_later(identity, resource_type, month)
                count = 0

        return UsageStats(count=count, limit=limit, remaining=max(0, limit - count), month=month)

    async def can_consume(
        self,
        identity: str,
        resource_type: str,
        plan: str | None,
        role: str | None = None,
        *,
        on_backend_error: BackendErrorPolicy = BackendErrorPolicy.ALLOW,
    ) -> QuotaDecision:
        """Advisory check: does the caller have allowance left this month?

        Args:
            on_backend_error: ALLOW returns the nominal limit when the store
                fails (fail open); DENY returns a rejection (fail closed).
        """
        table = self._plan_limits.current
        month = month_key(self._clock())

        if table.is_admin(role):
            table.resource(resource_type)
            return QuotaDecision(allowed=True, remaining=UNLIMITED, limit=UNLIMITED, month=month)

        limit = table.resolve_limit(resource_type, plan, role)
        if limit <= 0:
            return QuotaDecision(allowed=False, remaining=0, limit=0, month=month)

        try:
            count = await self._load_count(identity, resource_type, month) or 0
        except StoreUnavailableError:
            policy = BackendErrorPolicy(on_backend_error)
            logger.warning(
                "quota.check_failed",
                extra={
                    "identity_hash": hash_identifier(identity),
                    "resource_type": resource_type,
                    "policy": policy.value,
                },
            )
            if policy is BackendErrorPolicy.ALLOW:
                return QuotaDecision(allowed=True, remaining=limit, limit=limit, month=month)
            return QuotaDecision(allowed=False, remaining=0, limit=limit, month=month)

        remaining = max(0, limit - count)
        return QuotaDecision(
            allowed=remaining > 0, remaining=remaining, limit=limit, month=month, used=count
        )

    async def record_consumption(
        self,
        identity: str,
        resource_type: str,
        plan: str | None,
        role: str | None = None,
        amount: int = 1,
    ) -> None:
        """Add ``amount`` to this month's count after a successful action.

        Uses the store's native atomic increment (upsert), so concurrent
        recordings never lose units. Failures are logged and swallowed: the
        user-facing action already happened.
        """
        if amount < 1:
            raise ValueError("amount must be >= 1")

        table = self._plan_limits.current
        resource = table.resource(resource_type)
        if table.is_admin(role) and not resource.record_admin_usage:
            return
        if not table.is_admin(role) and table.resolve_limit(resource_type, plan, role) <= 0:
            logger.debug(
                "quota.record_skipped",
                extra={"resource_type": resource_type, "reason": "not_entitled"},
            )
            return

        now = self._clock()
        month = month_key(now)
        try:
            await self._store.increment(
                self._collection,
                usage_record_id(identity, resource_type, month),
                {"count": amount},
                set_fields={"last_updated": now},
                on_insert={
                    "identity": identity,
                    "resource_type": resource_type,
                    "month": month,
                    "last_reset": now,
                },
            )
        except StoreUnavailableError as exc:
            logger.error(
                "quota.record_failed",
                extra={
                    "identity_hash": hash_identifier(identity),
                    "resource_type": resource_type,
                    "amount": amount,
                    "error_code": exc.code,
                },
            )

    async def drain(self) -> None:
        """Wait for background record materialization (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
