from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request

from review_api.core.auth import verify_admin_key
from review_api.core.errors import CounterStoreError
from review_api.core.logging import pseudonymize
from review_api.core.rate_limit import enforce_rate_limit, get_rate_limit_guard
from review_api.ratelimit.guard import RateLimitGuard
from review_api.ratelimit.tiers import PolicyTier
from review_api.schemas.rate_limit import (
    AttemptResult,
    AttemptSummary,
    ClientStatus,
    QuotaStatus,
    RateLimitResetResponse,
    RateLimitStatusResponse,
    RateLimitTestRequest,
    RateLimitTestResponse,
    StoreStatus,
    TierConfiguration,
    TierResetResult,
)

logger = logging.getLogger(__name__)

# Quota is charged before the admin key check so key guessing is throttled too
router = APIRouter(
    prefix="/api/admin/rate-limit",
    tags=["Rate limit administration"],
    dependencies=[
        Depends(enforce_rate_limit(PolicyTier.ADMIN)),
        Depends(verify_admin_key),
    ],
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.get("", response_model=RateLimitStatusResponse)
async def rate_limit_status(
    request: Request,
    client_id: str | None = Query(None, description="Client key; defaults to the caller."),
    tier: PolicyTier = Query(PolicyTier.API, alias="type"),
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
) -> RateLimitStatusResponse:
    """Report store connectivity, a client's quota and the tier table.

    The client's quota is read without consuming it.
    """

    identifier = client_id or guard.client_key(request)
    registry = guard.registry
    connected = await registry.store.ping()

    current: QuotaStatus | None = None
    error: str | None = None
    try:
        decision = await registry.for_tier(tier).peek(identifier)
        current = QuotaStatus(
            limit=decision.limit,
            remaining=decision.remaining,
            reset=decision.reset_at,
            limited=not decision.allowed,
        )
    except CounterStoreError as exc:
        error = exc.message

    logger.info(
        "rate_limit.status_checked",
        extra={"client_id": identifier, "tier": tier.value, "store_connected": connected},
    )

    return RateLimitStatusResponse(
        store=StoreStatus(
            connected=connected,
            status="operational" if connected else "disconnected",
        ),
        client=ClientStatus(
            identifier=identifier,
            type=tier,
            current_status=current,
            error=error,
        ),
        configurations=[
            TierConfiguration(
                type=t,
                requests=c.max_requests,
                window_seconds=c.window_seconds,
                description=c.description,
            )
            for t, c in registry.configurations()
        ],
        timestamp=_now(),
    )


@router.post("/test", response_model=RateLimitTestResponse)
async def rate_limit_test(
    payload: RateLimitTestRequest,
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
) -> RateLimitTestResponse:
    """Charge a client's quota ``requests`` times and report each decision."""

    limiter = guard.registry.for_tier(payload.type)
    results: list[AttemptResult] = []
    for attempt in range(1, payload.requests + 1):
        decision = await limiter.check(payload.client_id)
        results.append(
            AttemptResult(
                attempt=attempt,
                success=decision.allowed,
                remaining=decision.remaining,
                limit=decision.limit,
                reset=decision.reset_at,
            )
        )

    successful = sum(1 for r in results if r.success)
    logger.info(
        "rate_limit.test_completed",
        extra={
            "client_id": payload.client_id,
            "tier": payload.type.value,
            "request_count": payload.requests,
            "successful": successful,
        },
    )

    return RateLimitTestResponse(
        client_id=payload.client_id,
        type=payload.type,
        request_count=payload.requests,
        results=results,
        summary=AttemptSummary(
            successful=successful,
            blocked=len(results) - successful,
            final_status=results[-1],
        ),
        timestamp=_now(),
    )


@router.delete("", response_model=RateLimitResetResponse)
async def rate_limit_reset(
    client_id: str = Query(..., min_length=1, description="Client key to reset."),
    tier: PolicyTier | None = Query(None, alias="type", description="Tier; all tiers if omitted."),
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
) -> RateLimitResetResponse:
    """Delete a client's counters for one tier or every tier."""

    deleted = await guard.registry.reset(client_id, tier)
    logger.info(
        "rate_limit.client_reset",
        extra={"client_key_hash": pseudonymize(client_id), "tier": tier.value if tier else "all"},
    )

    return RateLimitResetResponse(
        client_id=client_id,
        type=tier.value if tier else "all",
        results=[TierResetResult(type=t, keys_deleted=n) for t, n in deleted.items()],
        total_keys_deleted=sum(deleted.values()),
        timestamp=_now(),
    )
