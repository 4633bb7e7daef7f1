"""Pydantic schemas for the plan x resource limit table."""

from __future__ import annotations

from typing import Dict

from pydantic import BaseModel, Field, model_validator


class ResourceLimits(BaseModel):
    """Monthly allowance of one resource type, per plan."""

    limits: Dict[str, int] = Field(
        default_factory=dict,
        description="Plan name -> monthly limit. Plans not listed get 0 (not entitled).",
    )
    aliases: Dict[str, str] = Field(
        default_factory=dict,
        description="Resource-specific plan aliases, applied instead of the global ones.",
    )
    record_admin_usage: bool = Field(
        False,
        description="Record administrative consumption in the usage ledger (checks stay bypassed).",
    )
    description: str | None = None

    @model_validator(mode="after")
    def _non_negative(self) -> "ResourceLimits":
        negative = sorted(plan for plan, value in self.limits.items() if value < 0)
        if negative:
            raise ValueError(f"limits must be >= 0 (plans: {', '.join(negative)})")
        return self


class FeatureGroup(BaseModel):
    """Counters kept on the identity document and reset together each month."""

    month_field: str = Field(..., description="Field holding the YYYY-MM marker of the counters.")
    counters: Dict[str, str] = Field(
        ..., description="Feature name -> counter field on the identity document."
    )


class PlanLimitConfig(BaseModel):
    """Complete, versioned limit table."""

    version: str = Field("1", description="Opaque version label reported by the API.")
    default_plan: str = Field("Free", description="Plan assumed when the caller has none.")
    aliases: Dict[str, str] = Field(
        default_factory=dict,
        description="Plan -> plan whose allowance pool it shares.",
    )
    resources: Dict[str, ResourceLimits] = Field(default_factory=dict)
    feature_groups: Dict[str, FeatureGroup] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _groups_reference_resources(self) -> "PlanLimitConfig":
        seen: dict[str, str] = {}
        for group_name, group in self.feature_groups.items():
            for feature in group.counters:
                if feature not in self.resources:
                    raise ValueError(
                        f"feature '{feature}' in group '{group_name}' has no resource limits"
                    )
                if feature in seen:
                    raise ValueError(
                        f"feature '{feature}' belongs to both '{seen[feature]}' and '{group_name}'"
                    )
                seen[feature] = group_name
        return self
