"""Fixed-window limiters, one per policy tier.

Counting scheme:
- The window bucket is ``int(now // window_seconds)``.
- Each request atomically increments ``(tier, client, bucket)`` in the store.
- A count equal to the quota is admitted, anything above it is rejected.

A fixed window admits up to twice the nominal rate across a window edge.
Only ``Limiter`` knows about windows, so a sliding window or token bucket can
replace it without touching the guard or the middleware.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Callable
from urllib.parse import quote

from review_api.adapters.counter_store.base import AbstractCounterStore
from review_api.core.errors import ConfigurationAppError
from review_api.ratelimit.tiers import PolicyTier, TierConfig, freeze_tier_table

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    """Allow/reject outcome plus quota metadata for one request.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window for the tier.
        remaining: Requests left in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window ends.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int


class Limiter:
    """Fixed-window limiter for a single tier."""

    def __init__(
        self,
        tier: PolicyTier,
        config: TierConfig,
        store: AbstractCounterStore,
        *,
        key_prefix: str = "ratelimit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tier = tier
        self.config = config
        self._store = store
        self._key_prefix = key_prefix
        self._clock = clock

    def _window(self, now: float) -> tuple[int, int]:
        """Return (bucket, reset_at_epoch_seconds) for a timestamp."""
        window = self.config.window_seconds
        bucket = int(now // window)
        return bucket, (bucket + 1) * window

    def client_prefix(self, client_key: str) -> str:
        """Key prefix covering every window of one client in this tier."""
        return f"{self._key_prefix}:{self.tier.value}:{quote(client_key, safe='')}:"

    def counter_key(self, client_key: str, bucket: int) -> str:
        return f"{self.client_prefix(client_key)}{bucket}"

    def _decide(self, count: int, reset_at: int) -> AdmissionDecision:
        limit = self.config.max_requests
        return AdmissionDecision(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
        )

    async def check(self, client_key: str) -> AdmissionDecision:
        """Consume one unit of the client's quota and decide admission.

        Args:
            client_key: Identity of the caller within this tier.

        Returns:
            AdmissionDecision for this request.

        Raises:
            CounterStoreError: If the store call fails or times out.
        """
        bucket, reset_at = self._window(self._clock())
        count = await self._store.incr(
            self.counter_key(client_key, bucket),
            self.config.window_seconds,
        )
        return self._decide(count, reset_at)

    async def peek(self, client_key: str) -> AdmissionDecision:
        """Report the current window without consuming quota.

        ``allowed`` tells whether the next request would be admitted.
        """
        bucket, reset_at = self._window(self._clock())
        count = await self._store.get(self.counter_key(client_key, bucket))
        limit = self.config.max_requests
        return AdmissionDecision(
            allowed=count < limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
        )

    async def reset(self, client_key: str) -> int:
        """Delete every counter of the client in this tier.

        Returns:
            Number of deleted counter keys.
        """
        return await self._store.delete_prefix(self.client_prefix(client_key))


class LimiterRegistry:
    """One configured Limiter per tier over a shared counter store."""

    def __init__(
        self,
        tiers: Mapping[PolicyTier, TierConfig],
        store: AbstractCounterStore,
        *,
        key_prefix: str = "ratelimit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Build limiters for every tier.

        Args:
            tiers: Tier table; must cover every PolicyTier.
            store: Counter store shared by all limiters.
            key_prefix: Namespace for counter keys.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ConfigurationAppError: If a tier has no configuration.
        """
        self._tiers = freeze_tier_table(tiers)
        self.store = store
        self.clock = clock
        self._limiters = {
            tier: Limiter(tier, config, store, key_prefix=key_prefix, clock=clock)
            for tier, config in self._tiers.items()
        }

    def for_tier(self, tier: PolicyTier) -> Limiter:
        """Return the limiter for a tier.

        Raises:
            ConfigurationAppError: If the tier is not configured.
        """
        try:
            return self._limiters[tier]
        except KeyError:
            raise ConfigurationAppError(
                code="rate_limit_tier_missing",
                message=f"No rate limit configuration for tier: {tier}",
            ) from None

    def configurations(self) -> list[tuple[PolicyTier, TierConfig]]:
        return list(self._tiers.items())

    async def reset(self, client_key: str, tier: PolicyTier | None = None) -> dict[PolicyTier, int]:
        """Delete a client's counters for one tier, or for all tiers.

        Returns:
            Deleted key count per tier.
        """
        tiers = [tier] if tier is not None else list(self._limiters)
        results: dict[PolicyTier, int] = {}
        for t in tiers:
            results[t] = await self.for_tier(t).reset(client_key)
        logger.info(
            "rate_limit.reset",
            extra={
                "tiers": [t.value for t in tiers],
                "keys_deleted": sum(results.values()),
            },
        )
        return results
