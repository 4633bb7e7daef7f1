"""Application factory for the FastAPI app.

Centralizes app construction (engine, middleware, handlers, routers) so
tests can build an app around their own in-process engine.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from usage_guard.api.routes import (
    features_router,
    health_router,
    plan_limits_router,
    quotas_router,
    rate_limits_router,
    usage_router,
)
from usage_guard.core.config import settings
from usage_guard.core.exception_handlers import setup_exception_handlers
from usage_guard.core.logging import configure_logging
from usage_guard.core.middleware import request_id_middleware
from usage_guard.core.openapi import apply_openapi_customizations
from usage_guard.services.engine import QuotaEngine, build_engine

logger = logging.getLogger(__name__)


def create_app(engine: QuotaEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        engine: Prebuilt engine. When omitted one is built from settings;
            either way it is closed on shutdown.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    engine = engine or build_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("app.startup", extra={"plan_limits_version": engine.plan_limits.current.version})
        try:
            yield
        finally:
            await engine.aclose()
            logger.info("app.shutdown")

    app = FastAPI(
        title="Usage Guard",
        description=(
            "Rate limiting and monthly quota enforcement for costly actions. "
            "Calling backends authenticate with X-API-Key and forward the "
            "resolved user in X-User-Id, X-User-Plan and X-User-Role."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    for router in (
        rate_limits_router,
        quotas_router,
        features_router,
        usage_router,
        plan_limits_router,
    ):
        app.include_router(router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
