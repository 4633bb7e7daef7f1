from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from usage_guard.core.auth import verify_api_key
from usage_guard.core.config import settings
from usage_guard.core.dependencies import EngineDep
from usage_guard.core.rate_limit import client_address, raise_if_limited
from usage_guard.schemas.rate_limit import RateLimitCheckRequest, RateLimitCheckResponse

router = APIRouter(tags=["Rate limits"], dependencies=[Depends(verify_api_key)])


@router.post("/rate-limits/check", response_model=RateLimitCheckResponse)
async def check_rate_limit(
    payload: RateLimitCheckRequest,
    request: Request,
    response: Response,
    engine: EngineDep,
) -> RateLimitCheckResponse:
    """Consume one request from a call-site budget.

    Lets a backend gate actions that are not served by this API. Denied
    attempts return 429 with ``Retry-After`` and do not consume budget.
    """
    identity = payload.identity or client_address(request)
    decision = await engine.rate_limiter.enforce(
        payload.key_prefix, identity, payload.limit, payload.window_ms
    )
    raise_if_limited(decision)

    if settings.app.rate_limit_include_headers:
        response.headers.update(decision.headers())
    return RateLimitCheckResponse(
        allowed=decision.allowed,
        limit=decision.limit,
        remaining=decision.remaining,
        reset_at_ms=decision.reset_at_ms,
        retry_after_seconds=decision.retry_after_seconds,
    )
