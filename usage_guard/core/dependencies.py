"""Request-scoped access to the engine and quota gating for routes."""

from __future__ import annotations

from typing import Annotated, Awaitable, Callable

from fastapi import Depends, Request

from usage_guard.core.auth import Caller, require_caller
from usage_guard.core.errors import FeatureNotEntitledError, LimitExceededError
from usage_guard.services.engine import QuotaEngine
from usage_guard.services.quota_tracker import BackendErrorPolicy, QuotaDecision


def get_engine(request: Request) -> QuotaEngine:
    """Engine built by the app factory and stored on ``app.state``."""
    return request.app.state.engine


EngineDep = Annotated[QuotaEngine, Depends(get_engine)]
CallerDep = Annotated[Caller, Depends(require_caller)]


def enforce_quota(
    resource_type: str,
    *,
    on_backend_error: BackendErrorPolicy = BackendErrorPolicy.ALLOW,
) -> Callable[..., Awaitable[QuotaDecision]]:
    """Dependency factory blocking a route when the caller's monthly allowance is spent.

    The check is advisory; the route records consumption itself once the
    action succeeds. A plan with no allowance at all is rejected with 403
    ``feature_not_entitled``; a spent allowance with 429 ``quota_limit_reached``.

    Example:
        >>> @router.post("/captions", dependencies=[Depends(enforce_quota("caption"))])
    """

    async def dependency(engine: EngineDep, caller: CallerDep) -> QuotaDecision:
        decision = await engine.quota_tracker.can_consume(
            caller.identity,
            resource_type,
            caller.plan,
            caller.role,
            on_backend_error=on_backend_error,
        )
        if decision.allowed:
            return decision

        if decision.limit == 0:
            raise FeatureNotEntitledError(
                code="feature_not_entitled",
                message="Upgrade your plan to unlock this feature.",
                details={"resource_type": resource_type, "month": decision.month},
                feature=resource_type,
                limit=0,
                used=decision.used,
            )
        raise LimitExceededError(
            code="quota_limit_reached",
            message="Monthly limit reached. Upgrade for more.",
            details={
                "resource_type": resource_type,
                "limit": decision.limit,
                "used": decision.used,
                "remaining": decision.remaining,
                "month": decision.month,
            },
        )

    return dependency
