"""Rate limit policy tiers and their immutable configuration table."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from review_api.core.config import RateLimitSettings
from review_api.core.errors import ConfigurationAppError


class PolicyTier(str, Enum):
    """Named rate limit policy applied to a class of routes."""

    API = "api"
    DATA = "data"
    AUTH = "auth"
    MUTATION = "mutation"
    EXTERNAL = "external"
    ADMIN = "admin"
    SEED = "seed"


DEFAULT_TIER = PolicyTier.API

_DESCRIPTIONS: dict[PolicyTier, str] = {
    PolicyTier.API: "General API endpoints",
    PolicyTier.DATA: "Data fetching endpoints",
    PolicyTier.AUTH: "Authentication endpoints",
    PolicyTier.MUTATION: "Data mutation endpoints",
    PolicyTier.EXTERNAL: "External API proxy endpoints",
    PolicyTier.ADMIN: "Admin operation endpoints",
    PolicyTier.SEED: "Database seeding endpoints",
}


@dataclass(frozen=True)
class TierConfig:
    """Counting window and quota for one tier.

    Attributes:
        window_seconds: Length of the fixed counting window.
        max_requests: Requests admitted per window (inclusive).
        description: Human-readable purpose of the tier.
    """

    window_seconds: int
    max_requests: int
    description: str = ""

    def __post_init__(self) -> None:
        if self.window_seconds < 1:
            raise ConfigurationAppError(
                code="invalid_tier_window",
                message="window_seconds must be >= 1",
                details={"context": {"window_seconds": self.window_seconds}},
            )
        if self.max_requests < 1:
            raise ConfigurationAppError(
                code="invalid_tier_quota",
                message="max_requests must be >= 1",
                details={"context": {"max_requests": self.max_requests}},
            )


TierTable = Mapping[PolicyTier, TierConfig]


def freeze_tier_table(table: Mapping[PolicyTier, TierConfig]) -> TierTable:
    """Validate that every tier is configured and return a read-only copy.

    Raises:
        ConfigurationAppError: If a tier has no configuration.
    """

    missing = [tier.value for tier in PolicyTier if tier not in table]
    if missing:
        raise ConfigurationAppError(
            code="rate_limit_tier_missing",
            message=f"No rate limit configuration for tier(s): {', '.join(missing)}",
            details={
                "hint": "Set RATE_LIMIT_<TIER>_REQUESTS and RATE_LIMIT_<TIER>_WINDOW_SECONDS",
                "context": {"missing": missing},
            },
        )
    return MappingProxyType({tier: table[tier] for tier in PolicyTier})


def build_tier_table(rate_limit_settings: RateLimitSettings) -> TierTable:
    """Build the process-wide tier table from settings.

    Args:
        rate_limit_settings: Loaded ``RATE_LIMIT_*`` settings.

    Returns:
        Immutable mapping of every PolicyTier to its TierConfig.

    Raises:
        ConfigurationAppError: If a tier is missing or has invalid numbers.
    """

    table: dict[PolicyTier, TierConfig] = {}
    for tier in PolicyTier:
        max_requests = getattr(rate_limit_settings, f"{tier.value}_requests", None)
        window_seconds = getattr(rate_limit_settings, f"{tier.value}_window_seconds", None)
        if max_requests is None or window_seconds is None:
            continue
        table[tier] = TierConfig(
            window_seconds=int(window_seconds),
            max_requests=int(max_requests),
            description=_DESCRIPTIONS[tier],
        )
    return freeze_tier_table(table)
