"""Admission control for inbound requests.

The guard turns a request into one of three outcomes:

- ``Allowed``: the counter was incremented and the quota holds.
- ``Rejected``: the counter was incremented past the quota.
- ``StoreUnavailable``: the counter store failed. Treated like ``Allowed``
  (fail open) but without quota headers, and logged at warning level.

``wrap()`` decorates a ``request -> response`` handler with that decision.
Each request is counted at most once per tier: outcomes are cached on
``request.state`` by tier. A later evaluation without an explicit tier reuses
the first outcome; one with an explicit tier reuses the outcome for that tier.
The middleware resolves a route's declared tier before classifying, so in
practice the middleware and the route dependency share a single check.
Nothing is refunded when a request is cancelled after the increment.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from starlette.requests import Request
from starlette.responses import Response

from review_api.core.errors import RateLimitExceededError
from review_api.core.logging import pseudonymize
from review_api.ratelimit.classifier import RouteClassifier
from review_api.ratelimit.identity import identify
from review_api.ratelimit.limiter import AdmissionDecision, LimiterRegistry
from review_api.ratelimit.responses import (
    build_rejection_response,
    quota_headers,
    rejection_message,
    retry_after_seconds,
)
from review_api.ratelimit.tiers import PolicyTier

logger = logging.getLogger(__name__)

OUTCOME_STATE_ATTR = "rate_limit_outcome"

Handler = Callable[[Request], Awaitable[Response]]


@dataclass(frozen=True)
class Allowed:
    tier: PolicyTier
    client_key: str
    decision: AdmissionDecision


@dataclass(frozen=True)
class Rejected:
    tier: PolicyTier
    client_key: str
    decision: AdmissionDecision


@dataclass(frozen=True)
class StoreUnavailable:
    tier: PolicyTier
    client_key: str
    error: Exception


AdmissionOutcome = Union[Allowed, Rejected, StoreUnavailable]


class RateLimitGuard:
    """Classify, identify, count and decide for each request."""

    def __init__(
        self,
        registry: LimiterRegistry,
        classifier: RouteClassifier | None = None,
        *,
        enabled: bool = True,
        include_headers: bool = True,
        trust_forwarded_headers: bool = True,
    ) -> None:
        """Initialize the guard.

        Args:
            registry: Limiters for every tier.
            classifier: Route classifier (default routing table if omitted).
            enabled: When False, wrapped handlers are called unconditionally.
            include_headers: Attach quota headers to admitted responses.
            trust_forwarded_headers: Identify clients by proxy headers.
        """
        self.registry = registry
        self.classifier = classifier or RouteClassifier()
        self.enabled = enabled
        self.include_headers = include_headers
        self.trust_forwarded_headers = trust_forwarded_headers

    def resolve_tier(self, request: Request, tier: PolicyTier | None = None) -> PolicyTier:
        if tier is not None:
            return tier
        return self.classifier.classify(request.url.path, request.method)

    def client_key(self, request: Request) -> str:
        return identify(request, trust_forwarded=self.trust_forwarded_headers)

    async def evaluate(self, request: Request, tier: PolicyTier | None = None) -> AdmissionOutcome:
        """Count the request against its tier and return the outcome.

        Args:
            request: Incoming request.
            tier: Explicit tier, bypassing route classification.

        Returns:
            Allowed, Rejected or StoreUnavailable. Never raises for store
            failures.
        """
        outcomes: dict[PolicyTier, AdmissionOutcome] = getattr(
            request.state, OUTCOME_STATE_ATTR, None
        ) or {}
        if tier is None and outcomes:
            return next(iter(outcomes.values()))

        resolved = self.resolve_tier(request, tier)
        if resolved in outcomes:
            return outcomes[resolved]

        client_key = self.client_key(request)
        limiter = self.registry.for_tier(resolved)
        log_extra = {
            "tier": resolved.value,
            "key_hash": pseudonymize(client_key),
            "path": request.url.path,
            "method": request.method,
        }

        outcome: AdmissionOutcome
        try:
            decision = await limiter.check(client_key)
        except Exception as exc:
            logger.warning(
                "rate_limit.store_unavailable",
                extra={
                    **log_extra,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            outcome = StoreUnavailable(tier=resolved, client_key=client_key, error=exc)
        else:
            quota_extra = {
                **log_extra,
                "limit": decision.limit,
                "remaining": decision.remaining,
                "reset_at": decision.reset_at,
                "window_s": limiter.config.window_seconds,
            }
            if decision.allowed:
                logger.info("rate_limit.allowed", extra=quota_extra)
                outcome = Allowed(tier=resolved, client_key=client_key, decision=decision)
            else:
                logger.warning("rate_limit.exceeded", extra=quota_extra)
                outcome = Rejected(tier=resolved, client_key=client_key, decision=decision)

        outcomes[resolved] = outcome
        setattr(request.state, OUTCOME_STATE_ATTR, outcomes)
        return outcome

    def rejection_response(self, outcome: Rejected) -> Response:
        config = self.registry.for_tier(outcome.tier).config
        return build_rejection_response(outcome.decision, now=self.registry.clock(), config=config)

    def exceeded_error(self, outcome: Rejected) -> RateLimitExceededError:
        """Build the exception equivalent of ``rejection_response``."""
        decision = outcome.decision
        config = self.registry.for_tier(outcome.tier).config
        return RateLimitExceededError(
            code="rate_limited",
            message=rejection_message(decision, config),
            details={
                "tier": outcome.tier.value,
                "limit": decision.limit,
                "remaining": decision.remaining,
                "reset_at": decision.reset_at,
                "retry_after": retry_after_seconds(decision, self.registry.clock()),
            },
        )

    def success_headers(
        self, outcome: AdmissionOutcome, *, skip_successful_headers: bool = False
    ) -> dict[str, str]:
        """Quota headers for an admitted response (empty on the fail-open path)."""
        if not isinstance(outcome, Allowed):
            return {}
        if not self.include_headers or skip_successful_headers:
            return {}
        return quota_headers(outcome.decision)

    def wrap(
        self,
        handler: Handler,
        *,
        tier: PolicyTier | None = None,
        skip_successful_headers: bool = False,
    ) -> Handler:
        """Decorate a request handler with rate limiting.

        Args:
            handler: Downstream ``request -> response`` callable.
            tier: Explicit tier for every request through this handler.
            skip_successful_headers: Do not add quota headers to admitted
                responses.

        Returns:
            Handler with the same signature, usable wherever the original was.
        """

        @functools.wraps(handler)
        async def rate_limited(request: Request) -> Response:
            if not self.enabled:
                return await handler(request)

            outcome = await self.evaluate(request, tier)
            if isinstance(outcome, Rejected):
                return self.rejection_response(outcome)

            response = await handler(request)
            response.headers.update(
                self.success_headers(outcome, skip_successful_headers=skip_successful_headers)
            )
            return response

        return rate_limited
