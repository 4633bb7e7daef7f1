"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before anything imports ``usage_guard`` so the
settings singleton never picks up a developer's backends.
"""

import os
from datetime import datetime, timezone

import pytest

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")
# Tests run against in-process backends only
os.environ.pop("REDIS_URL", None)
os.environ.pop("MONGODB_URI", None)
os.environ.pop("QUOTA_PLAN_LIMITS_PATH", None)

from usage_guard.adapters.store.memory import InMemoryDocumentStore  # noqa: E402
from usage_guard.services.plan_limits import PlanLimitRegistry, PlanLimitTable  # noqa: E402


class FakeClock:
    """Mutable UTC clock for month-bucket tests."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def registry() -> PlanLimitRegistry:
    return PlanLimitRegistry(PlanLimitTable.default())
