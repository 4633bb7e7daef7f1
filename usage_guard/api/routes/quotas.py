from __future__ import annotations

from fastapi import APIRouter, Depends, status

from usage_guard.core.auth import verify_api_key
from usage_guard.core.dependencies import CallerDep, EngineDep
from usage_guard.schemas.quota import (
    ConsumeAcceptedResponse,
    ConsumeRequest,
    QuotaCheckResponse,
    UsageStatsResponse,
)
from usage_guard.services.quota_tracker import BackendErrorPolicy

router = APIRouter(tags=["Quotas"], dependencies=[Depends(verify_api_key)])


@router.get("/quotas/{resource_type}", response_model=UsageStatsResponse)
async def get_usage_stats(
    resource_type: str, engine: EngineDep, caller: CallerDep
) -> UsageStatsResponse:
    """Current month's usage for the forwarded identity."""
    stats = await engine.quota_tracker.get_stats(
        caller.identity, resource_type, caller.plan, caller.role
    )
    return UsageStatsResponse(
        resource_type=resource_type,
        month=stats.month,
        count=stats.count,
        limit=stats.limit,
        remaining=stats.remaining,
    )


@router.post("/quotas/{resource_type}/check", response_model=QuotaCheckResponse)
async def check_quota(
    resource_type: str,
    engine: EngineDep,
    caller: CallerDep,
    on_backend_error: BackendErrorPolicy = BackendErrorPolicy.ALLOW,
) -> QuotaCheckResponse:
    """Advisory check. Always 200; the caller decides whether to block.

    Concurrent callers can both pass for the last unit. Use
    ``/v1/features/{feature}/consume`` where that overshoot is unacceptable.
    """
    decision = await engine.quota_tracker.can_consume(
        caller.identity,
        resource_type,
        caller.plan,
        caller.role,
        on_backend_error=on_backend_error,
    )
    return QuotaCheckResponse(
        resource_type=resource_type,
        allowed=decision.allowed,
        remaining=decision.remaining,
        limit=decision.limit,
        month=decision.month,
        used=decision.used,
    )


@router.post(
    "/quotas/{resource_type}/consume",
    response_model=ConsumeAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def record_consumption(
    resource_type: str,
    engine: EngineDep,
    caller: CallerDep,
    payload: ConsumeRequest | None = None,
) -> ConsumeAcceptedResponse:
    """Record units after the gated action succeeded.

    Recording failures are logged server-side and never surface here.
    """
    amount = payload.amount if payload else 1
    await engine.quota_tracker.record_consumption(
        caller.identity, resource_type, caller.plan, caller.role, amount
    )
    return ConsumeAcceptedResponse(resource_type=resource_type, amount=amount)
