"""Distributed fixed-window rate limiting for the public API surface."""

from review_api.ratelimit.classifier import RouteClassifier, RouteRule
from review_api.ratelimit.guard import (
    AdmissionOutcome,
    Allowed,
    RateLimitGuard,
    Rejected,
    StoreUnavailable,
)
from review_api.ratelimit.identity import UNKNOWN_CLIENT, identify
from review_api.ratelimit.limiter import AdmissionDecision, Limiter, LimiterRegistry
from review_api.ratelimit.middleware import RateLimitMiddleware
from review_api.ratelimit.tiers import PolicyTier, TierConfig, build_tier_table

__all__ = [
    "AdmissionDecision",
    "AdmissionOutcome",
    "Allowed",
    "Limiter",
    "LimiterRegistry",
    "PolicyTier",
    "RateLimitGuard",
    "RateLimitMiddleware",
    "Rejected",
    "RouteClassifier",
    "RouteRule",
    "StoreUnavailable",
    "TierConfig",
    "UNKNOWN_CLIENT",
    "build_tier_table",
    "identify",
]
