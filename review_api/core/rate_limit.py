"""Rate limiting wiring for the HTTP layer.

This module builds the process-wide guard from settings and exposes it to
routes.

Design goals:
- Explicit configuration: the tier table is built once at startup and passed
  into the registry and guard, never looked up from globals per request.
- Swap-friendly: the counter store is created by a factory behind an
  abstract interface (Redis in production, in-memory for single process).
- Fail fast on bad policy: an incomplete tier table aborts startup.

Two ways to protect a route:
- ``RateLimitMiddleware`` for whole path prefixes (installed by the app
  factory for ``RATE_LIMIT_PROTECTED_PREFIXES``).
- ``Depends(enforce_rate_limit(PolicyTier.X))`` on a route whose tier is
  known at registration time.

Both share the per-request outcome, so a request is counted once. The
middleware uses the tier a route declares through ``enforce_rate_limit``.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable

from fastapi import Request, Response

from review_api.adapters.counter_store import AbstractCounterStore, create_counter_store
from review_api.core.config import Settings, settings
from review_api.ratelimit.classifier import RouteClassifier
from review_api.ratelimit.guard import RateLimitGuard, Rejected
from review_api.ratelimit.limiter import LimiterRegistry
from review_api.ratelimit.middleware import ROUTE_TIER_ATTR, guard_from_app
from review_api.ratelimit.tiers import PolicyTier, build_tier_table

logger = logging.getLogger(__name__)


def build_rate_limit_guard(
    cfg: Settings | None = None,
    *,
    store: AbstractCounterStore | None = None,
    clock: Callable[[], float] = time.time,
) -> RateLimitGuard:
    """Build the guard, registry and store from settings.

    Args:
        cfg: Settings to read; defaults to global settings.
        store: Counter store override (tests); created from settings if omitted.
        clock: Time source for window computation.

    Returns:
        RateLimitGuard: Ready-to-use guard.

    Raises:
        ConfigurationAppError: If the tier table or store config is invalid.
    """

    cfg = cfg or settings
    tiers = build_tier_table(cfg.rate_limit)
    counter_store = store or create_counter_store(cfg.counter_store)
    registry = LimiterRegistry(
        tiers,
        counter_store,
        key_prefix=cfg.counter_store.key_prefix,
        clock=clock,
    )

    logger.info(
        "rate_limit.configured",
        extra={
            "enabled": cfg.rate_limit.enabled,
            "backend": type(counter_store).__name__,
            "tiers": {
                tier.value: {"max_requests": c.max_requests, "window_s": c.window_seconds}
                for tier, c in tiers.items()
            },
        },
    )

    return RateLimitGuard(
        registry,
        RouteClassifier(),
        enabled=cfg.rate_limit.enabled,
        include_headers=cfg.rate_limit.include_headers,
        trust_forwarded_headers=cfg.rate_limit.trust_forwarded_headers,
    )


def get_rate_limit_guard(request: Request) -> RateLimitGuard:
    """FastAPI dependency returning the application's guard."""

    return guard_from_app(request)


def enforce_rate_limit(
    tier: PolicyTier | None = None,
    *,
    skip_successful_headers: bool = False,
) -> Callable[[Request, Response], Awaitable[None]]:
    """Create a FastAPI dependency enforcing the rate limit for a route.

    When enabled, consumes 1 unit from the caller's budget in ``tier`` (or
    the classified tier). Quota headers are written to the route's response.

    Usage:
        @router.post("/auth/login", dependencies=[Depends(enforce_rate_limit(PolicyTier.AUTH))])

    Args:
        tier: Explicit tier; classification is skipped when given.
        skip_successful_headers: Do not add quota headers to admitted responses.

    Returns:
        Async dependency callable.

    Raises:
        RateLimitExceededError: (from the dependency) when the quota is used up.
    """

    async def _enforce(request: Request, response: Response) -> None:
        guard = get_rate_limit_guard(request)
        if not guard.enabled:
            return

        outcome = await guard.evaluate(request, tier)
        if isinstance(outcome, Rejected):
            raise guard.exceeded_error(outcome)

        response.headers.update(
            guard.success_headers(outcome, skip_successful_headers=skip_successful_headers)
        )

    if tier is not None:
        setattr(_enforce, ROUTE_TIER_ATTR, tier)
    return _enforce
