from __future__ import annotations

from fastapi import APIRouter, Depends

from review_api.core.rate_limit import get_rate_limit_guard
from review_api.ratelimit.guard import RateLimitGuard

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check for load balancers; never rate limited."""

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(guard: RateLimitGuard = Depends(get_rate_limit_guard)) -> dict:
    """Readiness check reporting counter store connectivity.

    The service keeps serving without the store (rate limiting fails open),
    so a disconnected store is reported as ``degraded`` rather than an error
    status.
    """

    connected = await guard.registry.store.ping()
    return {
        "status": "ok" if connected else "degraded",
        "counter_store": "operational" if connected else "disconnected",
    }
