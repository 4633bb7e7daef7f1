from __future__ import annotations

from fastapi import APIRouter, Depends

from usage_guard.core.auth import verify_api_key
from usage_guard.core.dependencies import CallerDep, EngineDep
from usage_guard.core.rate_limit import rate_limit
from usage_guard.schemas.quota import FeatureConsumeResponse
from usage_guard.services.quota_tracker import BackendErrorPolicy

router = APIRouter(tags=["Features"], dependencies=[Depends(verify_api_key)])


@router.post(
    "/features/{feature}/consume",
    response_model=FeatureConsumeResponse,
    dependencies=[Depends(rate_limit("featureConsume"))],
)
async def consume_feature(
    feature: str,
    engine: EngineDep,
    caller: CallerDep,
    on_backend_error: BackendErrorPolicy = BackendErrorPolicy.DENY,
) -> FeatureConsumeResponse:
    """Atomically check and consume one unit of a capped feature.

    Plan and role are read from the identity document inside the
    transaction, not from forwarded headers.

    Raises:
        FeatureNotEntitledError: 403 ``feature_not_entitled``.
        QuotaExceededError: 403 ``quota_exceeded``.
        IdentityNotFoundError: 404.
        StoreUnavailableError: 503 under the ``deny`` policy.
    """
    result = await engine.enforcer.enforce_and_record(
        caller.identity, feature, on_backend_error=on_backend_error
    )
    return FeatureConsumeResponse(
        feature=result.feature,
        month=result.month,
        limit=result.limit,
        used=result.used_after,
        degraded=result.degraded,
    )
