"""Application-level exception types.

This module defines the engine's error taxonomy, enabling consistent error
handling, logging, and API responses:

- StoreUnavailableError: durable backend unreachable. Soft paths recover
  locally (fallback store or fail-open); only the hard-cap path surfaces it.
- LimitExceededError: soft rejection (rate limit or advisory quota the caller
  chose to block on).
- QuotaExceededError / FeatureNotEntitledError: hard rejections raised by the
  transactional enforcer, carrying feature, used and limit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    hint: str
    feature: str
    resource_type: str
    used: int
    limit: int
    remaining: int
    month: str
    retry_after: int
    backend: str
    attempts: int
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class UnknownResourceError(ValidationAppError):
    """Raised when a resource type or feature is absent from the plan table."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class IdentityNotFoundError(AppError):
    """Raised when the identity document required by a transaction is missing."""


class StoreUnavailableError(AppError):
    """Raised when the durable backend cannot serve a call."""


class TransactionConflictError(StoreUnavailableError):
    """Raised when a read-modify-write transaction keeps losing to concurrent writers."""


@dataclass
class LimitExceededError(AppError):
    """Soft rejection: the caller is over a rate limit or an advisory quota.

    Attributes:
        retry_after: Seconds until the caller may try again, when known.
        headers: Response headers the HTTP layer should attach.
    """

    retry_after: int | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class QuotaAppError(AppError):
    """Hard rejection from the transactional enforcer."""

    feature: str = ""
    limit: int = 0
    used: int = 0


class QuotaExceededError(QuotaAppError):
    """The monthly allowance for a feature has been consumed."""


class FeatureNotEntitledError(QuotaAppError):
    """The caller's plan has no allowance for the feature at all."""
