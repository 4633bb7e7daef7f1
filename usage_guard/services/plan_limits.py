"""Plan limit table: ``plan x resource_type -> monthly limit``.

Limits are configuration data consumed by the quota paths. The table is
versioned and held by a registry so it can be swapped or reloaded from disk
while the service runs.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from usage_guard.core.errors import UnknownResourceError, ValidationAppError
from usage_guard.schemas.plan_limits import FeatureGroup, PlanLimitConfig, ResourceLimits

logger = logging.getLogger(__name__)

# Allowance reported for the administrative role. Large but finite so every
# response keeps an integer limit.
UNLIMITED = 999_999

_UNCAPPED = {"Elite": UNLIMITED, "Agency": UNLIMITED}

DEFAULT_PLAN_LIMITS: dict[str, Any] = {
    "version": "builtin-1",
    "default_plan": "Free",
    "aliases": {"OnlyFansStudio": "Elite"},
    "resources": {
        "general_ai": {
            "limits": {"Free": 50, "Pro": 1000, "Elite": 3000, "Agency": 3000},
            "description": "AI text generations",
        },
        "sexting_session": {
            "limits": {"Free": 0, "Pro": 0, "Elite": 800, "Agency": 800},
            "description": "Interactive chat assistant sessions",
        },
        "strategy": {
            "limits": {"Free": 1, "Pro": 2, "Elite": 5, "Agency": 5},
            "aliases": {"OnlyFansStudio": "Pro"},
            "description": "Strategy generations (each runs several web searches)",
        },
        "weekly_plan": {
            "limits": {"Free": 1, "Pro": 999, "Elite": 999, "Agency": 999},
            "aliases": {"OnlyFansStudio": "Pro"},
        },
        "caption": {
            "limits": {"Free": 10, "Pro": 500, "Elite": 1500, "Agency": 1000},
        },
        "web_search": {
            "limits": {"Free": 0, "Pro": 16, "Elite": 40, "Agency": 40},
            "aliases": {"OnlyFansStudio": "Pro"},
            "description": "Live web research calls",
        },
        "content_gaps": {"limits": {"Pro": 2, **_UNCAPPED}},
        "predict": {"limits": {"Pro": 5, **_UNCAPPED}},
        "repurpose": {"limits": {"Pro": 5, **_UNCAPPED}},
    },
    "feature_groups": {
        "compose_insights": {
            "month_field": "compose_insights_usage_month",
            "counters": {
                "content_gaps": "monthly_content_gaps_used",
                "predict": "monthly_predictions_used",
                "repurpose": "monthly_repurposes_used",
            },
        },
    },
}


class PlanLimitTable:
    """Immutable view over a validated ``PlanLimitConfig``."""

    def __init__(self, config: PlanLimitConfig, *, admin_role: str = "Admin") -> None:
        self._config = config
        self._admin_role = admin_role
        self._group_by_feature: dict[str, tuple[str, FeatureGroup]] = {
            feature: (name, group)
            for name, group in config.feature_groups.items()
            for feature in group.counters
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, admin_role: str = "Admin") -> "PlanLimitTable":
        """Validate a raw mapping into a table.

        Raises:
            ValidationAppError: The mapping is not a valid limit table.
        """
        try:
            config = PlanLimitConfig.model_validate(data)
        except ValidationError as exc:
            raise ValidationAppError(
                code="invalid_plan_limits",
                message="Plan limit table failed validation",
                details={"hint": str(exc)},
            ) from exc
        return cls(config, admin_role=admin_role)

    @classmethod
    def from_file(cls, path: str | Path, *, admin_role: str = "Admin") -> "PlanLimitTable":
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValidationAppError(
                code="invalid_plan_limits",
                message="Plan limit file could not be read",
                details={"hint": f"{type(exc).__name__}: {exc}"},
            ) from exc
        return cls.from_mapping(raw, admin_role=admin_role)

    @classmethod
    def default(cls, *, admin_role: str = "Admin") -> "PlanLimitTable":
        return cls.from_mapping(DEFAULT_PLAN_LIMITS, admin_role=admin_role)

    @property
    def version(self) -> str:
        return self._config.version

    @property
    def admin_role(self) -> str:
        return self._admin_role

    def is_admin(self, role: str | None) -> bool:
        return role is not None and role == self._admin_role

    def resource(self, resource_type: str) -> ResourceLimits:
        try:
            return self._config.resources[resource_type]
        except KeyError:
            raise UnknownResourceError(
                code="unknown_resource",
                message=f"Unknown resource type: '{resource_type}'",
                details={"resource_type": resource_type},
            ) from None

    def normalize_plan(self, plan: str | None, resource_type: str | None = None) -> str:
        """Map a plan to the plan whose allowance pool it draws from."""
        if not plan:
            return self._config.default_plan
        if resource_type is not None:
            aliases = self.resource(resource_type).aliases
            if plan in aliases:
                return aliases[plan]
        return self._config.aliases.get(plan, plan)

    def resolve_limit(self, resource_type: str, plan: str | None, role: str | None) -> int:
        """Monthly limit for the caller; UNLIMITED for the administrative role.

        Plans absent from the resource's table resolve to 0.
        """
        resource = self.resource(resource_type)
        if self.is_admin(role):
            return UNLIMITED
        return resource.limits.get(self.normalize_plan(plan, resource_type), 0)

    def feature_group(self, feature: str) -> tuple[str, FeatureGroup]:
        """Return ``(group_name, group)`` owning a transactional feature."""
        try:
            return self._group_by_feature[feature]
        except KeyError:
            raise UnknownResourceError(
                code="unknown_feature",
                message=f"Unknown feature: '{feature}'",
                details={"feature": feature},
            ) from None

    def to_dict(self) -> dict[str, Any]:
        return self._config.model_dump()


class PlanLimitRegistry:
    """Holds the live table; swaps are atomic for readers."""

    def __init__(self, table: PlanLimitTable, *, source_path: str | None = None) -> None:
        self._table = table
        self._source_path = source_path
        self._lock = threading.Lock()

    @property
    def current(self) -> PlanLimitTable:
        return self._table

    @property
    def source_path(self) -> str | None:
        return self._source_path

    def swap(self, table: PlanLimitTable) -> PlanLimitTable:
        """Install ``table`` and return the one it replaced."""
        with self._lock:
            previous, self._table = self._table, table
        logger.info(
            "plan_limits.swapped",
            extra={"previous_version": previous.version, "version": table.version},
        )
        return previous

    def reload(self) -> PlanLimitTable:
        """Re-read the configured file and install it.

        Raises:
            ValidationAppError: No file is configured or it is invalid; the
                current table stays in place.
        """
        if not self._source_path:
            raise ValidationAppError(
                code="plan_limits_not_reloadable",
                message="No plan limit file is configured",
                details={"hint": "Set QUOTA_PLAN_LIMITS_PATH to enable reloads"},
            )
        table = PlanLimitTable.from_file(self._source_path, admin_role=self._table.admin_role)
        self.swap(table)
        return table


def load_plan_limits(path: str | None, *, admin_role: str = "Admin") -> PlanLimitRegistry:
    """Build the registry from a file when configured, else from the built-in table."""
    if path:
        table = PlanLimitTable.from_file(path, admin_role=admin_role)
    else:
        table = PlanLimitTable.default(admin_role=admin_role)
    logger.info(
        "plan_limits.loaded",
        extra={"version": table.version, "source": path or "builtin"},
    )
    return PlanLimitRegistry(table, source_path=path)
