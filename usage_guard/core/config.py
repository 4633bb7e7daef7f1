"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Backends are optional. A missing REDIS_URL disables the durable window store
(rate limiting degrades to the in-process fallback) and a missing MONGODB_URI
selects the in-process document store. Neither raises at startup.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """HTTP surface configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether calling backends must present X-API-Key",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid service API keys",
    )
    admin_role: str = Field(
        "Admin",
        description="Role name treated as administrative (bypasses checks, never counted)",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Throttle the engine's own HTTP surface per caller",
    )
    rate_limit_requests: int = Field(
        120,
        description="Requests allowed per window on the engine's own routes",
        ge=1,
    )
    rate_limit_window_ms: int = Field(
        60_000,
        description="Window size in milliseconds for the engine's own routes",
        ge=1,
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers on responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate file after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Durable window store (sliding-window rate limiting)."""

    url: str | None = Field(
        None,
        description="Redis connection URL (redis:// or rediss://). Unset disables the durable store",
    )
    key_prefix: str = Field(
        "usage_guard",
        description="Namespace prepended to every rate-limit key",
    )
    timeout_ms: int = Field(
        500,
        description="Budget for a single durable rate-limit call before falling back",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class MongoSettings(BaseSettings):
    """Durable document store (usage records and identity documents)."""

    uri: str | None = Field(
        None,
        description="MongoDB connection string. Unset selects the in-process store",
    )
    database: str = Field("usage_guard", description="Database name")
    timeout_ms: int = Field(
        2_000,
        description="Server selection / socket timeout for store calls",
        ge=1,
    )
    transaction_max_attempts: int = Field(
        8,
        description="Attempts for a read-modify-write transaction before giving up on conflicts with writers outside this process",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="MONGODB_",
        case_sensitive=False,
    )


class QuotaSettings(BaseSettings):
    """Quota engine tuning."""

    plan_limits_path: str | None = Field(
        None,
        description="JSON file holding the plan x resource limit table (reloadable)",
    )
    fallback_max_entries: int = Field(
        10_000,
        description="Max keys held by the in-process rate-limit fallback",
        ge=1,
    )
    limiter_cache_size: int = Field(
        64,
        description="Max cached durable limiter instances (one per limit/window pair)",
        ge=1,
    )
    usage_collection: str = Field("usage_records", description="Monthly usage ledger collection")
    users_collection: str = Field("users", description="Identity documents holding feature counters")
    totals_collection: str = Field("call_totals", description="External call totals collection")

    model_config = SettingsConfigDict(
        env_prefix="QUOTA_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    mongo: MongoSettings = Field(default_factory=MongoSettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
