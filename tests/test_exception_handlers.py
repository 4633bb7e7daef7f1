"""Tests for global exception handlers.

All error types render the same JSON envelope with the mapped status code
and never leak internals.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from usage_guard.core.errors import (
    AuthenticationAppError,
    FeatureNotEntitledError,
    IdentityNotFoundError,
    LimitExceededError,
    QuotaExceededError,
    StoreUnavailableError,
    TransactionConflictError,
    UnknownResourceError,
    ValidationAppError,
)
from usage_guard.core.exception_handlers import setup_exception_handlers, status_code_for


@pytest.fixture
def app_with_handlers() -> FastAPI:
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


@pytest.mark.parametrize(
    "error, status",
    [
        (ValidationAppError(code="v", message="m"), 400),
        (UnknownResourceError(code="unknown_resource", message="m"), 400),
        (AuthenticationAppError(code="a", message="m"), 403),
        (IdentityNotFoundError(code="identity_not_found", message="m"), 404),
        (StoreUnavailableError(code="store_unavailable", message="m"), 503),
        (TransactionConflictError(code="transaction_conflict", message="m"), 503),
        (LimitExceededError(code="rate_limit_exceeded", message="m"), 429),
        (QuotaExceededError(code="quota_exceeded", message="m"), 403),
        (FeatureNotEntitledError(code="feature_not_entitled", message="m"), 403),
    ],
)
def test_status_mapping(error, status: int) -> None:
    assert status_code_for(error) == status


def test_validation_error_envelope(client: TestClient, app_with_handlers: FastAPI) -> None:
    @app_with_handlers.get("/test-validation")
    async def endpoint():
        raise ValidationAppError(
            code="test_validation", message="Test validation error", details={"hint": "fix it"}
        )

    response = client.get("/test-validation")

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "test_validation"
    assert error["message"] == "Test validation error"
    assert error["details"] == {"hint": "fix it"}
    assert "request_id" in error


def test_quota_error_exposes_feature_usage(client: TestClient, app_with_handlers: FastAPI) -> None:
    @app_with_handlers.get("/test-quota")
    async def endpoint():
        raise QuotaExceededError(
            code="quota_exceeded",
            message="Monthly limit reached. Upgrade for more.",
            feature="predict",
            limit=5,
            used=5,
        )

    response = client.get("/test-quota")

    assert response.status_code == 403
    details = response.json()["error"]["details"]
    assert details == {"feature": "predict", "used": 5, "limit": 5}


def test_limit_exceeded_carries_headers(client: TestClient, app_with_handlers: FastAPI) -> None:
    @app_with_handlers.get("/test-limit")
    async def endpoint():
        raise LimitExceededError(
            code="rate_limit_exceeded",
            message="Too many requests. Try again later.",
            retry_after=12,
            headers={"X-RateLimit-Limit": "5", "X-RateLimit-Remaining": "0"},
        )

    response = client.get("/test-limit")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "12"
    assert response.headers["X-RateLimit-Limit"] == "5"


def test_details_omitted_when_empty(client: TestClient, app_with_handlers: FastAPI) -> None:
    @app_with_handlers.get("/test-auth")
    async def endpoint():
        raise AuthenticationAppError(code="invalid_api_key", message="Invalid or missing API key")

    response = client.get("/test-auth")

    assert response.status_code == 403
    assert "details" not in response.json()["error"]


def test_unexpected_exception_returns_generic_500(
    client: TestClient, app_with_handlers: FastAPI
) -> None:
    @app_with_handlers.get("/test-crash")
    async def endpoint():
        raise RuntimeError("database password is hunter2")

    response = client.get("/test-crash")

    assert response.status_code == 500
    body = response.text
    assert "internal_server_error" in body
    assert "hunter2" not in body
    assert "Traceback" not in body
