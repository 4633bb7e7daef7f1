"""Unit tests for service key authentication and caller identity."""

from unittest.mock import patch

import pytest

from usage_guard.core.auth import (
    Caller,
    optional_caller,
    parse_api_keys,
    require_caller,
    validate_api_key,
    verify_api_key,
)
from usage_guard.core.errors import AuthenticationAppError


class TestParseAPIKeys:
    """Test API key parsing utility function."""

    def test_parse_multiple_keys(self) -> None:
        assert parse_api_keys("key1,key2,key3") == {"key1", "key2", "key3"}

    def test_parse_keys_with_whitespace(self) -> None:
        """Test that whitespace is trimmed from keys."""
        assert parse_api_keys("key1 , key2  ,  key3") == {"key1", "key2", "key3"}

    @pytest.mark.parametrize("raw", [None, "", "   ,  ,  "])
    def test_parse_empty_inputs(self, raw) -> None:
        assert parse_api_keys(raw) == set()


class TestValidateAPIKey:
    """Test core API key validation logic."""

    @patch("usage_guard.core.auth.settings")
    def test_validate_bypassed_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        validate_api_key("any-random-key")
        validate_api_key(None)

    @patch("usage_guard.core.auth.settings")
    def test_validate_raises_when_no_keys_configured(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = None

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("some-key")

        assert exc_info.value.code == "api_keys_not_configured"

    @patch("usage_guard.core.auth.settings")
    def test_validate_rejects_missing_key(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "valid-key"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key(None)

        assert exc_info.value.code == "missing_api_key"

    @patch("usage_guard.core.auth.settings")
    def test_validate_rejects_invalid_key(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "valid-key-1,valid-key-2"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("invalid-key")

        assert exc_info.value.code == "invalid_api_key"

    @patch("usage_guard.core.auth.settings")
    def test_validate_accepts_configured_keys(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = " key1 , key2 "

        validate_api_key("key1")
        validate_api_key("key2")
        with pytest.raises(AuthenticationAppError):
            validate_api_key(" key1 ")

    @pytest.mark.asyncio
    @patch("usage_guard.core.auth.settings")
    async def test_dependency_delegates(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "valid-key"

        await verify_api_key(x_api_key="valid-key")
        with pytest.raises(AuthenticationAppError):
            await verify_api_key(x_api_key="wrong-key")


class TestCallerIdentity:
    @pytest.mark.asyncio
    async def test_forwarded_identity(self) -> None:
        caller = await optional_caller(" user-1 ", "Pro", "User")

        assert caller == Caller(identity="user-1", plan="Pro", role="User")

    @pytest.mark.asyncio
    async def test_blank_plan_and_role_become_none(self) -> None:
        caller = await optional_caller("user-1", " ", "")

        assert caller == Caller(identity="user-1")

    @pytest.mark.asyncio
    async def test_anonymous_traffic(self) -> None:
        assert await optional_caller(None, "Pro", None) is None
        assert await optional_caller("  ", None, None) is None

    @pytest.mark.asyncio
    async def test_required_identity(self) -> None:
        with pytest.raises(AuthenticationAppError) as exc_info:
            await require_caller(None, "Pro", None)

        assert exc_info.value.code == "missing_identity"
