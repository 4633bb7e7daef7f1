"""Service authentication and caller identity.

The engine does not verify end users itself. Calling backends authenticate
with a shared service key (``X-API-Key``) and forward the identity they
already resolved: ``X-User-Id``, ``X-User-Plan`` and ``X-User-Role``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Header

from usage_guard.core.config import settings
from usage_guard.core.errors import AuthenticationAppError
from usage_guard.core.logging import hash_identifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    """Identity on whose behalf limits are tracked."""

    identity: str
    plan: str | None = None
    role: str | None = None


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> sorted(parse_api_keys("key1, key2 ,"))
        ['key1', 'key2']
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()
    return {key.strip() for key in keys_string.split(",") if key.strip()}


def validate_api_key(provided_key: str | None) -> None:
    """Check a service key against the configured keys.

    Raises:
        AuthenticationAppError: Key missing, invalid, or none configured.
    """
    if not settings.app.api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.api_keys)
    if not valid_keys:
        logger.error("auth.failed", extra={"reason": "api_keys_not_configured"})
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if not provided_key:
        logger.warning("auth.failed", extra={"reason": "missing_api_key"})
        raise AuthenticationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    if provided_key not in valid_keys:
        logger.warning(
            "auth.failed",
            extra={"reason": "invalid_api_key", "api_key_hash": hash_identifier(provided_key)},
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding every engine route except health."""
    validate_api_key(x_api_key)


async def optional_caller(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
    x_user_plan: Annotated[str | None, Header(alias="X-User-Plan")] = None,
    x_user_role: Annotated[str | None, Header(alias="X-User-Role")] = None,
) -> Caller | None:
    """Forwarded identity when present; None for anonymous traffic."""
    if not x_user_id or not x_user_id.strip():
        return None
    return Caller(
        identity=x_user_id.strip(),
        plan=(x_user_plan or "").strip() or None,
        role=(x_user_role or "").strip() or None,
    )


async def require_caller(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
    x_user_plan: Annotated[str | None, Header(alias="X-User-Plan")] = None,
    x_user_role: Annotated[str | None, Header(alias="X-User-Role")] = None,
) -> Caller:
    """Forwarded identity, required for quota routes.

    Raises:
        AuthenticationAppError: No ``X-User-Id`` was forwarded.
    """
    caller = await optional_caller(x_user_id, x_user_plan, x_user_role)
    if caller is None:
        raise AuthenticationAppError(
            code="missing_identity",
            message="Missing caller identity. Forward X-User-Id.",
        )
    return caller
