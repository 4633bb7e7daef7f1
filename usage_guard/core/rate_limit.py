"""Rate limiting dependency for FastAPI routes.

Wires the sliding-window limiter into the HTTP layer. Each protected route
picks its own ``(key_prefix, limit, window_ms)``; the budget is per user id
when the calling backend forwards one, else per client network address.
"""

from __future__ import annotations

from typing import Annotated, Awaitable, Callable

from fastapi import Depends, Request, Response

from usage_guard.core.auth import Caller, optional_caller
from usage_guard.core.config import settings
from usage_guard.core.dependencies import EngineDep
from usage_guard.core.errors import LimitExceededError
from usage_guard.services.rate_limiter import ANONYMOUS_IDENTITY, RateLimitDecision


def client_address(request: Request) -> str:
    """Best-effort network address of the original client.

    Order: first hop of ``X-Forwarded-For``, ``X-Real-IP``, socket peer,
    then ``"anonymous"``.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = (request.headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return ANONYMOUS_IDENTITY


def raise_if_limited(decision: RateLimitDecision) -> None:
    """Turn a blocked decision into a 429-mapped error carrying the headers."""
    if decision.allowed:
        return
    raise LimitExceededError(
        code="rate_limit_exceeded",
        message="Too many requests. Try again later.",
        details={"limit": decision.limit, "retry_after": decision.retry_after_seconds},
        retry_after=decision.retry_after_seconds,
        headers=decision.headers() if settings.app.rate_limit_include_headers else {},
    )


def rate_limit(
    key_prefix: str,
    limit: int | None = None,
    window_ms: int | None = None,
) -> Callable[..., Awaitable[RateLimitDecision | None]]:
    """Dependency factory enforcing a per-route budget.

    ``limit`` and ``window_ms`` default to ``APP_RATE_LIMIT_REQUESTS`` and
    ``APP_RATE_LIMIT_WINDOW_MS``. Disabled entirely by
    ``APP_RATE_LIMIT_ENABLED=false``.

    Raises:
        LimitExceededError: The budget is spent (rendered as 429).
    """

    async def dependency(
        request: Request,
        response: Response,
        engine: EngineDep,
        caller: Annotated[Caller | None, Depends(optional_caller)],
    ) -> RateLimitDecision | None:
        if not settings.app.rate_limit_enabled:
            return None

        identity = caller.identity if caller else client_address(request)
        decision = await engine.rate_limiter.enforce(
            key_prefix,
            identity,
            limit or settings.app.rate_limit_requests,
            window_ms or settings.app.rate_limit_window_ms,
        )
        raise_if_limited(decision)
        if settings.app.rate_limit_include_headers:
            response.headers.update(decision.headers())
        return decision

    return dependency
