"""Pydantic schemas for rate limit introspection responses."""

from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, Field


class PolicyResponse(BaseModel):
    """A configured admission policy."""

    name: str = Field(..., description="Policy name (e.g. 'auth', 'write').")
    window_ms: int = Field(..., description="Fixed window length in milliseconds.")
    max_requests: int = Field(..., description="Requests admitted per window.")


class PolicyListResponse(BaseModel):
    policies: List[PolicyResponse] = Field(default_factory=list)


class QuotaStatusResponse(BaseModel):
    """Caller's current standing under one policy, without consuming quota."""

    policy: str = Field(..., description="Policy the quota refers to.")
    identifier_type: Literal["user", "ip"] = Field(
        ...,
        description="Whether the caller is counted by account or by client address.",
    )
    limit: int = Field(..., description="Requests admitted per window.")
    used: int = Field(..., description="Attempts registered in the current window.")
    remaining: int = Field(..., description="Requests left in the current window.")
    reset_at_ms: int | None = Field(
        None,
        description="UNIX epoch ms when the current window ends (null when no window is open).",
    )
