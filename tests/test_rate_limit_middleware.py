"""Tests for the rate limit middleware and guard outcomes."""

import asyncio

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from conftest import FakeClock, make_tier_table
from review_api.adapters.counter_store import InMemoryCounterStore
from review_api.core.errors import ConfigurationAppError, CounterStoreError
from review_api.core.exception_handlers import setup_exception_handlers
from review_api.core.logging import pseudonymize
from review_api.core.rate_limit import enforce_rate_limit
from review_api.ratelimit.guard import Allowed, RateLimitGuard, Rejected, StoreUnavailable
from review_api.ratelimit.identity import UNKNOWN_CLIENT
from review_api.ratelimit.limiter import LimiterRegistry
from review_api.ratelimit.middleware import GUARD_STATE_ATTR, RateLimitMiddleware, declared_tier
from review_api.ratelimit.tiers import PolicyTier

QUOTA_HEADERS = ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset")


class UnavailableStore(InMemoryCounterStore):
    async def incr(self, key: str, ttl_seconds: int) -> int:
        raise CounterStoreError(code="counter_store_timeout", message="Counter store did not answer incr")


class CountingStore(InMemoryCounterStore):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.incr_calls = 0

    async def incr(self, key: str, ttl_seconds: int) -> int:
        self.incr_calls += 1
        return await super().incr(key, ttl_seconds)


def _app(guard: RateLimitGuard, **middleware_kwargs) -> tuple[FastAPI, list[str]]:
    app = FastAPI()
    calls: list[str] = []
    setattr(app.state, GUARD_STATE_ATTR, guard)
    setup_exception_handlers(app)

    @app.get("/api/properties")
    async def list_properties():
        calls.append("properties")
        return {"items": []}

    @app.post("/api/auth/login")
    async def login():
        calls.append("login")
        return {"token": "t"}

    @app.get("/api/reviews", dependencies=[Depends(enforce_rate_limit())])
    async def list_reviews():
        calls.append("reviews")
        return {"items": []}

    @app.get("/api/reviews/export", dependencies=[Depends(enforce_rate_limit(PolicyTier.AUTH))])
    async def export_reviews():
        calls.append("export")
        return {"url": "/exports/reviews.csv"}

    @app.get("/public/ping")
    async def ping():
        calls.append("ping")
        return {"pong": True}

    app.add_middleware(RateLimitMiddleware, **middleware_kwargs)
    return app, calls


def _request(client: tuple[str, int] | None = None, path: str = "/api/properties") -> Request:
    scope = {"type": "http", "method": "GET", "path": path, "headers": []}
    if client is not None:
        scope["client"] = client
    return Request(scope)


class TestAdmission:
    def test_admitted_responses_carry_quota_headers(self, make_guard, clock: FakeClock) -> None:
        app, _ = _app(make_guard(data=(3, 60)))
        client = TestClient(app)

        first = client.get("/api/properties")
        second = client.get("/api/properties")

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "3"
        assert first.headers["X-RateLimit-Remaining"] == "2"
        assert second.headers["X-RateLimit-Remaining"] == "1"
        assert first.headers["X-RateLimit-Reset"] == str((int(clock.now // 60) + 1) * 60)

    def test_over_quota_returns_429_without_calling_handler(self, make_guard, clock: FakeClock) -> None:
        app, calls = _app(make_guard(auth=(2, 900)))
        client = TestClient(app)

        statuses = [client.post("/api/auth/login").status_code for _ in range(3)]
        rejected = client.post("/api/auth/login")

        assert statuses == [200, 200, 429]
        assert calls == ["login", "login"]
        assert rejected.status_code == 429
        assert rejected.json() == {
            "status": "error",
            "code": "rate_limited",
            "message": "Too many requests. Limit: 2 requests per 15 minutes.",
            "retryAfterSeconds": int(rejected.headers["Retry-After"]),
        }
        window_end = (int(clock.now // 900) + 1) * 900
        assert rejected.headers["X-RateLimit-Remaining"] == "0"
        assert rejected.headers["X-RateLimit-Reset"] == str(window_end)
        assert int(rejected.headers["Retry-After"]) == window_end - int(clock.now)

    def test_quota_restored_in_next_window(self, make_guard, clock: FakeClock) -> None:
        app, _ = _app(make_guard(data=(1, 60)))
        client = TestClient(app)

        assert client.get("/api/properties").status_code == 200
        assert client.get("/api/properties").status_code == 429
        clock.advance(60)
        response = client.get("/api/properties")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_clients_are_counted_separately(self, make_guard) -> None:
        app, _ = _app(make_guard(data=(1, 60)))
        client = TestClient(app)

        assert client.get("/api/properties", headers={"X-Forwarded-For": "203.0.113.1"}).status_code == 200
        assert client.get("/api/properties", headers={"X-Forwarded-For": "203.0.113.2"}).status_code == 200
        assert client.get("/api/properties", headers={"X-Forwarded-For": "203.0.113.1"}).status_code == 429

    def test_explicit_tier_overrides_classification(self, make_guard) -> None:
        app, _ = _app(make_guard(auth=(1, 60), data=(100, 60)), tier=PolicyTier.AUTH)
        client = TestClient(app)

        assert client.get("/api/properties").status_code == 200
        assert client.get("/api/properties").status_code == 429

    def test_route_declared_tier_wins_over_classification(self, clock: FakeClock) -> None:
        store = CountingStore(clock=clock)
        registry = LimiterRegistry(make_tier_table(auth=(1, 60), data=(100, 60)), store, clock=clock)
        app, calls = _app(RateLimitGuard(registry))
        client = TestClient(app)

        first = client.get("/api/reviews/export")
        second = client.get("/api/reviews/export")

        assert [first.status_code, second.status_code] == [200, 429]
        assert first.headers["X-RateLimit-Limit"] == "1"
        assert store.incr_calls == 2
        assert calls == ["export"]

    def test_allowed_log_carries_pseudonymized_client(self, make_guard, caplog) -> None:
        app, _ = _app(make_guard(data=(3, 60)))
        client = TestClient(app)

        with caplog.at_level("INFO", logger="review_api.ratelimit.guard"):
            client.get("/api/properties", headers={"X-Forwarded-For": "203.0.113.7"})

        records = [r for r in caplog.records if r.getMessage() == "rate_limit.allowed"]
        assert len(records) == 1
        assert records[0].key_hash == pseudonymize("203.0.113.7")
        assert "203.0.113.7" not in records[0].key_hash

    def test_unprotected_paths_pass_through(self, make_guard, store: InMemoryCounterStore) -> None:
        app, calls = _app(make_guard(api=(1, 60)))
        client = TestClient(app)

        responses = [client.get("/public/ping") for _ in range(3)]

        assert all(r.status_code == 200 for r in responses)
        assert all("X-RateLimit-Limit" not in r.headers for r in responses)
        assert calls == ["ping"] * 3
        assert len(store) == 0

    def test_disabled_guard_never_counts(self, make_guard, store: InMemoryCounterStore) -> None:
        app, _ = _app(make_guard(enabled=False, data=(1, 60)))
        client = TestClient(app)

        responses = [client.get("/api/properties") for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert "X-RateLimit-Limit" not in responses[0].headers
        assert len(store) == 0


class TestHeaders:
    def test_headers_can_be_disabled_globally(self, make_guard) -> None:
        app, _ = _app(make_guard(include_headers=False, data=(1, 60)))
        client = TestClient(app)

        admitted = client.get("/api/properties")
        rejected = client.get("/api/properties")

        assert all(h not in admitted.headers for h in QUOTA_HEADERS)
        assert rejected.status_code == 429
        assert all(h in rejected.headers for h in QUOTA_HEADERS)

    def test_skip_successful_headers(self, make_guard) -> None:
        app, _ = _app(make_guard(data=(1, 60)), skip_successful_headers=True)
        client = TestClient(app)

        admitted = client.get("/api/properties")
        rejected = client.get("/api/properties")

        assert all(h not in admitted.headers for h in QUOTA_HEADERS)
        assert "Retry-After" in rejected.headers


class TestFailOpen:
    def test_store_failure_admits_without_headers(self, clock: FakeClock, caplog) -> None:
        registry = LimiterRegistry(make_tier_table(data=(1, 60)), UnavailableStore(clock=clock), clock=clock)
        app, calls = _app(RateLimitGuard(registry))
        client = TestClient(app)

        responses = [client.get("/api/properties") for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert calls == ["properties"] * 3
        assert all(h not in responses[0].headers for h in QUOTA_HEADERS)
        assert any(r.getMessage() == "rate_limit.store_unavailable" for r in caplog.records)

    def test_evaluate_returns_store_unavailable(self, clock: FakeClock) -> None:
        registry = LimiterRegistry(make_tier_table(), UnavailableStore(clock=clock), clock=clock)
        guard = RateLimitGuard(registry)

        outcome = asyncio.run(guard.evaluate(_request(("10.0.0.1", 1))))

        assert isinstance(outcome, StoreUnavailable)
        assert outcome.tier is PolicyTier.DATA
        assert guard.success_headers(outcome) == {}


class TestEvaluate:
    def test_anonymous_requests_share_one_bucket(self, make_guard) -> None:
        guard = make_guard(data=(2, 60))

        outcomes = [asyncio.run(guard.evaluate(_request())) for _ in range(3)]

        assert all(o.client_key == UNKNOWN_CLIENT for o in outcomes)
        assert [type(o) for o in outcomes] == [Allowed, Allowed, Rejected]

    def test_outcome_is_cached_per_tier(self, make_guard) -> None:
        guard = make_guard(data=(1, 60), auth=(5, 60))
        request = _request(("10.0.0.1", 1))

        first = asyncio.run(guard.evaluate(request))
        again = asyncio.run(guard.evaluate(request, PolicyTier.DATA))
        unspecified = asyncio.run(guard.evaluate(request))
        auth = asyncio.run(guard.evaluate(request, PolicyTier.AUTH))

        assert again is first
        assert unspecified is first
        assert auth is not first
        assert auth.tier is PolicyTier.AUTH
        assert auth.decision.remaining == 4
        assert asyncio.run(guard.evaluate(request, PolicyTier.AUTH)) is auth

    def test_declared_tier_follows_route_dependencies(self, make_guard) -> None:
        app, _ = _app(make_guard())

        def _resolve(path: str) -> PolicyTier | None:
            scope = {"type": "http", "method": "GET", "path": path, "headers": [], "app": app}
            return declared_tier(Request(scope))

        assert _resolve("/api/reviews/export") is PolicyTier.AUTH
        assert _resolve("/api/reviews") is None
        assert _resolve("/api/properties") is None
        assert _resolve("/api/missing") is None

    def test_middleware_and_dependency_count_once(self, clock: FakeClock) -> None:
        store = CountingStore(clock=clock)
        registry = LimiterRegistry(make_tier_table(data=(2, 60)), store, clock=clock)
        app, calls = _app(RateLimitGuard(registry))
        client = TestClient(app)

        first = client.get("/api/reviews")
        second = client.get("/api/reviews")
        third = client.get("/api/reviews")

        assert store.incr_calls == 3
        assert [first.status_code, second.status_code, third.status_code] == [200, 200, 429]
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert calls == ["reviews", "reviews"]


def test_missing_guard_is_a_configuration_error() -> None:
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/api/properties")
    async def list_properties():
        return {}

    app.add_middleware(RateLimitMiddleware)

    with pytest.raises(ConfigurationAppError) as exc_info:
        TestClient(app).get("/api/properties")

    assert exc_info.value.code == "rate_limit_guard_missing"
