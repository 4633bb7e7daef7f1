"""External call totals ledger.

Counts every real call to a metered external provider (web search, LLM,
...) independently of any plan allowance: a global document, one per
month, and per-identity month and lifetime documents, each split by caller
type. Administrative and system calls are counted here even though they
never touch plan quotas. Nothing in the engine reads these totals to make a
decision; failures are logged and swallowed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from usage_guard.adapters.store.base import AbstractDocumentStore, compound_id
from usage_guard.core.errors import StoreUnavailableError
from usage_guard.core.logging import hash_identifier
from usage_guard.services.plan_limits import PlanLimitRegistry
from usage_guard.utils.month_key import month_key, utc_now

logger = logging.getLogger(__name__)


class CallerType(str, Enum):
    ADMIN = "admin"
    USER = "user"
    SYSTEM = "system"


class UsageTotalsRecorder:
    """Writes call totals with native increments only."""

    def __init__(
        self,
        store: AbstractDocumentStore,
        plan_limits: PlanLimitRegistry,
        *,
        collection: str = "call_totals",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._plan_limits = plan_limits
        self._collection = collection
        self._users_collection = f"{collection}_users"
        self._clock = clock

    def resolve_caller_type(
        self,
        identity: str | None,
        role: str | None,
        caller_type: CallerType | None = None,
    ) -> CallerType:
        if caller_type is not None:
            return CallerType(caller_type)
        if self._plan_limits.current.is_admin(role):
            return CallerType.ADMIN
        return CallerType.USER if identity else CallerType.SYSTEM

    async def record_call(
        self,
        source: str,
        *,
        identity: str | None = None,
        plan: str | None = None,
        role: str | None = None,
        caller_type: CallerType | None = None,
    ) -> CallerType:
        """Count one external call made on behalf of ``identity`` (or the system)."""
        kind = self.resolve_caller_type(identity, role, caller_type)
        now = self._clock()
        month = month_key(now)
        increments = {
            "total_calls": 1,
            **{f"{t.value}_calls": int(t is kind) for t in CallerType},
        }

        totals = [
            (self._collection, compound_id(source, "global"), {"source": source}),
            (self._collection, compound_id(source, "month", month), {"source": source, "month": month}),
        ]
        await self._increment_all(source, totals, increments, now)

        if not identity:
            return kind

        per_user_fields: dict[str, Any] = {
            "identity": identity,
            "role": self._plan_limits.current.admin_role if kind is CallerType.ADMIN else "User",
            "plan": plan,
            "caller_type": kind.value,
        }
        users = self._users_collection
        per_user = [
            (users, compound_id(source, month, identity), {"source": source, "month": month}),
            (users, compound_id(source, "lifetime", identity), {"source": source}),
        ]
        await self._increment_all(source, per_user, {"count": 1}, now, extra_fields=per_user_fields)
        return kind

    async def _increment_all(
        self,
        source: str,
        targets: list[tuple[str, str, dict[str, Any]]],
        increments: dict[str, int],
        now: datetime,
        *,
        extra_fields: dict[str, Any] | None = None,
    ) -> None:
        results = await asyncio.gather(
            *(
                self._store.increment(
                    collection,
                    doc_id,
                    increments,
                    set_fields={**(extra_fields or {}), "last_updated": now},
                    on_insert=on_insert,
                )
                for collection, doc_id, on_insert in targets
            ),
            return_exceptions=True,
        )
        for (collection, doc_id, _), outcome in zip(targets, results):
            if isinstance(outcome, StoreUnavailableError):
                logger.error(
                    "usage_totals.record_failed",
                    extra={
                        "source": source,
                        "collection": collection,
                        "doc_hash": hash_identifier(doc_id),
                        "error_code": outcome.code,
                    },
                )
            elif isinstance(outcome, BaseException):
                raise outcome
