from __future__ import annotations

from fastapi import APIRouter, Depends

from usage_guard.core.auth import verify_api_key
from usage_guard.core.dependencies import EngineDep
from usage_guard.schemas.quota import PlanLimitsResponse
from usage_guard.services.plan_limits import PlanLimitTable

router = APIRouter(tags=["Plan limits"], dependencies=[Depends(verify_api_key)])


def _render(table: PlanLimitTable) -> PlanLimitsResponse:
    return PlanLimitsResponse(version=table.version, admin_role=table.admin_role, table=table.to_dict())


@router.get("/plan-limits", response_model=PlanLimitsResponse)
async def get_plan_limits(engine: EngineDep) -> PlanLimitsResponse:
    return _render(engine.plan_limits.current)


@router.post("/plan-limits/reload", response_model=PlanLimitsResponse)
def reload_plan_limits(engine: EngineDep) -> PlanLimitsResponse:
    """Re-read ``QUOTA_PLAN_LIMITS_PATH``; an invalid file keeps the live table (400)."""
    return _render(engine.plan_limits.reload())
