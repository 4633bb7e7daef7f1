"""Pydantic schemas for quota, feature and usage totals endpoints."""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, Field

from usage_guard.services.usage_totals import CallerType


class UsageStatsResponse(BaseModel):
    resource_type: str
    month: str = Field(..., description="Calendar month bucket (UTC), 'YYYY-MM'.")
    count: int
    limit: int
    remaining: int


class QuotaCheckResponse(BaseModel):
    resource_type: str
    allowed: bool
    remaining: int
    limit: int
    month: str
    used: int = Field(default=0, description="Units recorded this month; 0 when the store could not be read.")


class ConsumeRequest(BaseModel):
    amount: int = Field(default=1, ge=1, description="Units consumed by the completed action.")


class ConsumeAcceptedResponse(BaseModel):
    resource_type: str
    amount: int
    status: str = "accepted"


class FeatureConsumeResponse(BaseModel):
    """Result of a transactional check-and-consume."""

    feature: str
    month: str
    limit: int | None = Field(
        default=None, description="None only when the store was down and the request was allowed."
    )
    used: int | None = Field(default=None, description="Usage after this call.")
    degraded: bool = False


class UsageCallRequest(BaseModel):
    caller_type: CallerType | None = Field(
        default=None,
        description="Override the derived caller type (admin/user/system).",
    )


class UsageCallResponse(BaseModel):
    source: str
    caller_type: CallerType


class PlanLimitsResponse(BaseModel):
    version: str
    admin_role: str
    table: Dict[str, Any]
