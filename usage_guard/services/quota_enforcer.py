"""Transactional multi-counter enforcement (hard cap).

Several features of one group keep their monthly counters on the identity
document, next to the plan and role. Checking and consuming happen inside a
single read-modify-write transaction on that document, so two concurrent
requests can never both take the last unit: the loser's commit conflicts,
it re-reads, and then fails the limit check.

Month rollover is applied inline: when the document's month marker is stale
every counter of the group is treated as 0 and rewritten in the same commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from usage_guard.adapters.store.base import AbstractDocumentStore, Document
from usage_guard.core.errors import (
    FeatureNotEntitledError,
    IdentityNotFoundError,
    QuotaExceededError,
    StoreUnavailableError,
)
from usage_guard.core.logging import hash_identifier
from usage_guard.services.plan_limits import PlanLimitRegistry
from usage_guard.services.quota_tracker import BackendErrorPolicy, coerce_count
from usage_guard.utils.month_key import month_key, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnforcementResult:
    """Outcome of a successful enforcement.

    ``limit`` and ``used_after`` are None only for a degraded result (store
    down under the ALLOW policy), where nothing could be read or recorded.
    """

    feature: str
    month: str
    limit: int | None
    used_after: int | None
    degraded: bool = False


class TransactionalQuotaEnforcer:
    """Atomic check-and-consume against counters on the identity document."""

    def __init__(
        self,
        store: AbstractDocumentStore,
        plan_limits: PlanLimitRegistry,
        *,
        collection: str = "users",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._plan_limits = plan_limits
        self._collection = collection
        self._clock = clock

    async def enforce_and_record(
        self,
        identity: str,
        feature: str,
        *,
        on_backend_error: BackendErrorPolicy = BackendErrorPolicy.DENY,
    ) -> EnforcementResult:
        """Consume one unit of ``feature`` for ``identity`` or raise.

        Args:
            identity: Id of the identity document holding plan, role and counters.
            feature: Feature name belonging to a configured feature group.
            on_backend_error: DENY (default) propagates store failures so the
                cap can never be exceeded; ALLOW lets the action through
                unrecorded.

        Returns:
            EnforcementResult with the post-increment usage.

        Raises:
            FeatureNotEntitledError: The plan's limit for the feature is 0.
            QuotaExceededError: The month's allowance is used up.
            IdentityNotFoundError: No identity document exists.
            StoreUnavailableError: Store failure under the DENY policy.
        """
        table = self._plan_limits.current
        _, group = table.feature_group(feature)
        counter_field = group.counters[feature]
        month = month_key(self._clock())

        def apply(doc: Document | None) -> tuple[dict[str, Any] | None, EnforcementResult]:
            if doc is None:
                raise IdentityNotFoundError(
                    code="identity_not_found",
                    message="User not found",
                    details={"feature": feature},
                )

            role = doc.get("role")
            is_new_month = doc.get(group.month_field) != month
            used = 0 if is_new_month else coerce_count(doc.get(counter_field))
            limit = table.resolve_limit(feature, doc.get("plan"), role)

            if table.is_admin(role):
                return None, EnforcementResult(feature=feature, month=month, limit=limit, used_after=used)

            if limit <= 0:
                raise FeatureNotEntitledError(
                    code="feature_not_entitled",
                    message="Upgrade your plan to unlock this feature.",
                    details={"feature": feature, "limit": limit, "used": used},
                    feature=feature,
                    limit=limit,
                    used=used,
                )
            if used >= limit:
                raise QuotaExceededError(
                    code="quota_exceeded",
                    message="Monthly limit reached. Upgrade for more.",
                    details={"feature": feature, "limit": limit, "used": used, "month": month},
                    feature=feature,
                    limit=limit,
                    used=used,
                )

            updates: dict[str, Any] = {}
            if is_new_month:
                updates[group.month_field] = month
                updates.update({field: 0 for field in group.counters.values()})
            updates[counter_field] = used + 1
            return updates, EnforcementResult(
                feature=feature, month=month, limit=limit, used_after=used + 1
            )

        try:
            result = await self._store.transact(self._collection, identity, apply)
        except StoreUnavailableError as exc:
            policy = BackendErrorPolicy(on_backend_error)
            logger.error(
                "quota.enforce_failed",
                extra={
                    "identity_hash": hash_identifier(identity),
                    "feature": feature,
                    "error_code": exc.code,
                    "policy": policy.value,
                },
            )
            if policy is BackendErrorPolicy.DENY:
                raise
            return EnforcementResult(
                feature=feature, month=month, limit=None, used_after=None, degraded=True
            )
        except (QuotaExceededError, FeatureNotEntitledError) as exc:
            logger.info(
                "quota.enforce_rejected",
                extra={
                    "identity_hash": hash_identifier(identity),
                    "feature": feature,
                    "error_code": exc.code,
                    "used": exc.used,
                    "limit": exc.limit,
                },
            )
            raise

        logger.debug(
            "quota.enforce_recorded",
            extra={"feature": feature, "used_after": result.used_after, "limit": result.limit},
        )
        return result
