"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any import that might build settings,
so tests never load a .env file or reach for a real Redis server.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("COUNTER_STORE_BACKEND", "memory")
os.environ.setdefault("APP_ADMIN_KEY_REQUIRED", "true")
os.environ.setdefault("APP_ADMIN_KEYS", "test-admin-key-123,test-admin-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Callable  # noqa: E402

import pytest  # noqa: E402

from review_api.adapters.counter_store import InMemoryCounterStore  # noqa: E402
from review_api.ratelimit.guard import RateLimitGuard  # noqa: E402
from review_api.ratelimit.limiter import LimiterRegistry  # noqa: E402
from review_api.ratelimit.tiers import PolicyTier, TierConfig  # noqa: E402


class FakeClock:
    """Controllable time source."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_tier_table(**overrides: tuple[int, int]) -> dict[PolicyTier, TierConfig]:
    """Tier table with generous defaults; overrides are (max_requests, window_seconds)."""

    table = {tier: TierConfig(window_seconds=60, max_requests=100) for tier in PolicyTier}
    for name, (max_requests, window_seconds) in overrides.items():
        table[PolicyTier(name)] = TierConfig(window_seconds=window_seconds, max_requests=max_requests)
    return table


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def make_guard(store: InMemoryCounterStore, clock: FakeClock) -> Callable[..., RateLimitGuard]:
    """Build a guard over the in-memory store with per-test tier overrides."""

    def _make(*, include_headers: bool = True, enabled: bool = True, **overrides) -> RateLimitGuard:
        registry = LimiterRegistry(make_tier_table(**overrides), store, clock=clock)
        return RateLimitGuard(registry, include_headers=include_headers, enabled=enabled)

    return _make


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Key": "test-admin-key-123"}
