"""Tests for the external call totals ledger."""

from unittest.mock import AsyncMock, Mock

import pytest

from usage_guard.adapters.store.base import AbstractDocumentStore
from usage_guard.adapters.store.memory import InMemoryDocumentStore
from usage_guard.core.errors import StoreUnavailableError
from usage_guard.services.plan_limits import PlanLimitRegistry
from usage_guard.services.usage_totals import CallerType, UsageTotalsRecorder


@pytest.fixture
def recorder(store: InMemoryDocumentStore, registry: PlanLimitRegistry, clock) -> UsageTotalsRecorder:
    return UsageTotalsRecorder(store, registry, clock=clock)


@pytest.mark.asyncio
async def test_counts_user_calls_globally_monthly_and_per_user(
    recorder: UsageTotalsRecorder, store: InMemoryDocumentStore
) -> None:
    await recorder.record_call("web_search", identity="user-1", plan="Pro")
    await recorder.record_call("web_search", identity="user-1", plan="Pro")

    global_doc = await store.get("call_totals", "web_search:global")
    month_doc = await store.get("call_totals", "web_search:month:2024-01")
    assert global_doc["total_calls"] == 2
    assert global_doc["user_calls"] == 2
    assert global_doc["admin_calls"] == 0
    assert month_doc["month"] == "2024-01"
    assert month_doc["total_calls"] == 2

    per_month = await store.get("call_totals_users", "web_search:2024-01:user-1")
    lifetime = await store.get("call_totals_users", "web_search:lifetime:user-1")
    assert per_month["count"] == 2
    assert lifetime["count"] == 2
    assert per_month["plan"] == "Pro"
    assert per_month["caller_type"] == "user"


@pytest.mark.asyncio
async def test_admin_calls_are_counted(
    recorder: UsageTotalsRecorder, store: InMemoryDocumentStore
) -> None:
    kind = await recorder.record_call("llm", identity="boss", role="Admin")

    assert kind is CallerType.ADMIN
    assert (await store.get("call_totals", "llm:global"))["admin_calls"] == 1
    assert (await store.get("call_totals_users", "llm:lifetime:boss"))["role"] == "Admin"


@pytest.mark.asyncio
async def test_system_calls_have_no_per_user_documents(
    recorder: UsageTotalsRecorder, store: InMemoryDocumentStore
) -> None:
    kind = await recorder.record_call("llm")

    assert kind is CallerType.SYSTEM
    assert (await store.get("call_totals", "llm:global"))["system_calls"] == 1


def test_explicit_caller_type_wins(recorder: UsageTotalsRecorder) -> None:
    assert recorder.resolve_caller_type("user-1", "Admin", CallerType.SYSTEM) is CallerType.SYSTEM
    assert recorder.resolve_caller_type("user-1", None) is CallerType.USER
    assert recorder.resolve_caller_type(None, None) is CallerType.SYSTEM


@pytest.mark.asyncio
async def test_separator_in_identity_does_not_merge_documents(
    recorder: UsageTotalsRecorder, store: InMemoryDocumentStore
) -> None:
    await recorder.record_call("llm", identity="2024-01:bob")
    await recorder.record_call("llm:2024-01", identity="bob")

    first = await store.get("call_totals_users", "llm:2024-01:2024-01%3Abob")
    second = await store.get("call_totals_users", "llm%3A2024-01:2024-01:bob")
    assert first["count"] == 1
    assert second["count"] == 1


@pytest.mark.asyncio
async def test_store_failures_are_swallowed(registry: PlanLimitRegistry, clock) -> None:
    store = Mock(spec=AbstractDocumentStore)
    store.increment = AsyncMock(
        side_effect=StoreUnavailableError(code="store_unavailable", message="down")
    )
    recorder = UsageTotalsRecorder(store, registry, clock=clock)

    kind = await recorder.record_call("llm", identity="user-1")

    assert kind is CallerType.USER
    assert store.increment.await_count == 4


@pytest.mark.asyncio
async def test_unexpected_errors_propagate(registry: PlanLimitRegistry, clock) -> None:
    store = Mock(spec=AbstractDocumentStore)
    store.increment = AsyncMock(side_effect=RuntimeError("bug"))
    recorder = UsageTotalsRecorder(store, registry, clock=clock)

    with pytest.raises(RuntimeError):
        await recorder.record_call("llm")
