"""Quota headers and the 429 rejection payload."""

from __future__ import annotations

import math
from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from review_api.ratelimit.limiter import AdmissionDecision
from review_api.ratelimit.tiers import TierConfig

RATE_LIMITED_CODE = "rate_limited"

_UNITS = ((86400, "day"), (3600, "hour"), (60, "minute"), (1, "second"))


def describe_window(seconds: int) -> str:
    """Render a window length for humans, e.g. 900 -> '15 minutes'."""
    for size, unit in _UNITS:
        if seconds % size == 0:
            amount = seconds // size
            return f"{unit}" if amount == 1 else f"{amount} {unit}s"
    return f"{seconds} seconds"


def retry_after_seconds(decision: AdmissionDecision, now: float) -> int:
    """Seconds until the window resets, rounded up and never negative."""
    return max(0, int(math.ceil(decision.reset_at - now)))


def quota_headers(decision: AdmissionDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at),
    }


def rejection_headers(decision: AdmissionDecision, retry_after: int) -> dict[str, str]:
    headers = quota_headers(decision)
    headers["Retry-After"] = str(retry_after)
    return headers


def rejection_message(decision: AdmissionDecision, config: TierConfig | None = None) -> str:
    if config is None:
        return f"Too many requests. Limit: {decision.limit} requests per window."
    return (
        f"Too many requests. Limit: {decision.limit} requests per "
        f"{describe_window(config.window_seconds)}."
    )


def rejection_body(message: str, retry_after: int) -> dict[str, Any]:
    return {
        "status": "error",
        "code": RATE_LIMITED_CODE,
        "message": message,
        "retryAfterSeconds": retry_after,
    }


def build_rejection_response(
    decision: AdmissionDecision,
    *,
    now: float,
    config: TierConfig | None = None,
) -> JSONResponse:
    """Build the HTTP 429 response for a rejected request.

    Args:
        decision: The rejecting decision.
        now: Current UNIX time, used for the retry hint.
        config: Tier configuration, used to describe the window.

    Returns:
        JSONResponse with the error body, quota headers and Retry-After.
    """
    retry_after = retry_after_seconds(decision, now)
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=rejection_body(rejection_message(decision, config), retry_after),
        headers=rejection_headers(decision, retry_after),
    )
