"""Pydantic schemas for the rate limit administration endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from review_api.ratelimit.tiers import PolicyTier


class TierConfiguration(BaseModel):
    """One row of the tier table."""

    type: PolicyTier
    requests: int = Field(..., description="Requests admitted per window.")
    window_seconds: int = Field(..., description="Window length in seconds.")
    description: str = ""


class QuotaStatus(BaseModel):
    """Quota state of a client in one tier (read without consuming)."""

    limit: int
    remaining: int
    reset: int = Field(..., description="UNIX epoch seconds when the window ends.")
    limited: bool = Field(..., description="True when the next request would be rejected.")


class StoreStatus(BaseModel):
    connected: bool
    status: str = Field(..., description="'operational' or 'disconnected'.")


class ClientStatus(BaseModel):
    identifier: str
    type: PolicyTier
    current_status: QuotaStatus | None = None
    error: str | None = None


class RateLimitStatusResponse(BaseModel):
    store: StoreStatus
    client: ClientStatus
    configurations: List[TierConfiguration]
    timestamp: datetime


class RateLimitTestRequest(BaseModel):
    """Consume quota on behalf of a client to verify enforcement."""

    client_id: str = Field(..., min_length=1, description="Client key to charge.")
    type: PolicyTier = Field(PolicyTier.API, description="Tier to charge.")
    requests: int = Field(1, ge=1, le=10, description="Units to consume (max 10).")


class AttemptResult(BaseModel):
    attempt: int
    success: bool
    remaining: int
    limit: int
    reset: int


class AttemptSummary(BaseModel):
    successful: int
    blocked: int
    final_status: AttemptResult


class RateLimitTestResponse(BaseModel):
    client_id: str
    type: PolicyTier
    request_count: int
    results: List[AttemptResult]
    summary: AttemptSummary
    timestamp: datetime


class TierResetResult(BaseModel):
    type: PolicyTier
    keys_deleted: int


class RateLimitResetResponse(BaseModel):
    client_id: str
    type: str = Field(..., description="Reset tier, or 'all'.")
    results: List[TierResetResult]
    total_keys_deleted: int
    timestamp: datetime
