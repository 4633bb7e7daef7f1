"""Pydantic schemas for rate limit checks."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RateLimitCheckRequest(BaseModel):
    """One request against a call-site budget."""

    key_prefix: str = Field(
        ..., min_length=1, description="Call-site namespace, e.g. 'generateTeaserPack'."
    )
    identity: str | None = Field(
        default=None,
        description="User id. Defaults to the caller's network address when omitted.",
    )
    limit: int = Field(..., ge=1, description="Requests allowed per window.")
    window_ms: int = Field(..., ge=1, description="Window length in milliseconds.")


class RateLimitCheckResponse(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int = Field(..., description="UNIX epoch milliseconds when budget frees up.")
    retry_after_seconds: int | None = None
