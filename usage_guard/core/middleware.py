"""HTTP middleware for request ID propagation and correlation.

Accepts an incoming request id header (``LOG_REQUEST_ID_HEADER``) or
generates a UUID, keeps it in contextvars for log correlation, and echoes it
back together with the request duration.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from usage_guard.core.config import settings
from usage_guard.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation id to the request context and the response.

    Side Effects:
        - Sets request_id in contextvars (accessible via get_request_id())
        - Clears it after the request completes
        - Adds the request id header and X-Request-Duration-ms to the response
    """
    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
