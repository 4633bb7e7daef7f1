from __future__ import annotations

from usage_guard.api.routes.features import router as features_router
from usage_guard.api.routes.health import router as health_router
from usage_guard.api.routes.plan_limits import router as plan_limits_router
from usage_guard.api.routes.quotas import router as quotas_router
from usage_guard.api.routes.rate_limits import router as rate_limits_router
from usage_guard.api.routes.usage import router as usage_router

__all__ = [
    "features_router",
    "health_router",
    "plan_limits_router",
    "quotas_router",
    "rate_limits_router",
    "usage_router",
]
