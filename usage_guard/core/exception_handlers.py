"""Global exception handlers for consistent error responses.

Every error leaves the API as ``{"error": {code, message, request_id, details}}``.

Status mapping:
- ValidationAppError (incl. UnknownResourceError) → 400
- AuthenticationAppError → 403
- IdentityNotFoundError → 404
- QuotaAppError (QuotaExceededError, FeatureNotEntitledError) → 403
- LimitExceededError → 429, with rate-limit headers and Retry-After
- StoreUnavailableError → 503
- Unexpected Exception → generic 500 (safety net)
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from usage_guard.core.errors import (
    AppError,
    AuthenticationAppError,
    IdentityNotFoundError,
    LimitExceededError,
    QuotaAppError,
    StoreUnavailableError,
)
from usage_guard.core.logging import get_request_id

logger = logging.getLogger(__name__)


def status_code_for(exc: AppError) -> int:
    """HTTP status for a domain error; unknown subclasses are client errors."""
    if isinstance(exc, LimitExceededError):
        return 429
    if isinstance(exc, (AuthenticationAppError, QuotaAppError)):
        return 403
    if isinstance(exc, IdentityNotFoundError):
        return 404
    if isinstance(exc, StoreUnavailableError):
        return 503
    return 400


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a domain error with its mapped status code.

    Quota rejections always expose ``feature``, ``used`` and ``limit`` in
    ``details`` so clients can show an upgrade prompt.
    """
    status_code = status_code_for(exc)
    request_id = get_request_id()

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": request_id,
        },
    )

    error_content: dict = {
        "code": exc.code,
        "message": exc.message,
        "request_id": request_id,
    }

    details = dict(exc.details or {})
    if isinstance(exc, QuotaAppError):
        details.update({"feature": exc.feature, "used": exc.used, "limit": exc.limit})
    if details:
        error_content["details"] = details

    headers: dict[str, str] | None = None
    if isinstance(exc, LimitExceededError):
        headers = dict(exc.headers)
        if exc.retry_after is not None:
            headers.setdefault("Retry-After", str(exc.retry_after))

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors. No internals leak to the client."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the app."""
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
