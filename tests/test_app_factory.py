"""Tests for application assembly: guard wiring, health and OpenAPI docs."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from review_api.adapters.counter_store import InMemoryCounterStore
from review_api.core.app_factory import create_app
from review_api.core.config import RateLimitSettings, Settings
from review_api.core.errors import ConfigurationAppError
from review_api.core.rate_limit import build_rate_limit_guard
from review_api.ratelimit.tiers import PolicyTier


def test_guard_built_from_settings(clock) -> None:
    cfg = Settings(rate_limit=RateLimitSettings(auth_requests=2, include_headers=False))

    guard = build_rate_limit_guard(cfg, store=InMemoryCounterStore(), clock=clock)

    assert guard.include_headers is False
    assert guard.registry.for_tier(PolicyTier.AUTH).config.max_requests == 2
    assert guard.registry.clock is clock


def test_invalid_backend_aborts_startup() -> None:
    cfg = Settings()
    cfg.counter_store.backend = "carrier-pigeon"

    with pytest.raises(ConfigurationAppError):
        build_rate_limit_guard(cfg)


def test_health_is_not_rate_limited(make_guard, store: InMemoryCounterStore) -> None:
    client = TestClient(create_app(guard=make_guard(api=(1, 60))))

    statuses = [client.get("/health").status_code for _ in range(3)]

    assert statuses == [200, 200, 200]
    assert len(store) == 0


def test_readiness_reports_store_state(make_guard, store: InMemoryCounterStore) -> None:
    guard = make_guard()
    client = TestClient(create_app(guard=guard))

    assert client.get("/health/ready").json() == {"status": "ok", "counter_store": "operational"}

    store.ping = AsyncMock(return_value=False)
    assert client.get("/health/ready").json() == {"status": "degraded", "counter_store": "disconnected"}


def test_shutdown_closes_store(make_guard, store: InMemoryCounterStore) -> None:
    store.close = AsyncMock()

    with TestClient(create_app(guard=make_guard())):
        pass

    store.close.assert_awaited_once()


def test_openapi_documents_rate_limits(make_guard) -> None:
    schema = TestClient(create_app(guard=make_guard())).get("/openapi.json").json()

    assert "RateLimited" in schema["components"]["responses"]
    assert "AdminKeyAuth" in schema["components"]["securitySchemes"]
    admin_get = schema["paths"]["/api/admin/rate-limit"]["get"]
    assert admin_get["security"] == [{"AdminKeyAuth": []}]
    assert admin_get["responses"]["429"] == {"$ref": "#/components/responses/RateLimited"}
    assert "429" not in schema["paths"]["/health"]["get"]["responses"]
