"""App-wide rate limiting middleware.

Usage:
    app.add_middleware(RateLimitMiddleware, prefixes=("/api",))

The guard is taken from the constructor or, when omitted, from
``app.state.rate_limit_guard`` at request time, so the app factory can build
it after middleware registration.

A tier declared on the target route with ``enforce_rate_limit(tier)`` takes
precedence over the middleware tier and over path classification.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match
from starlette.types import ASGIApp

from review_api.core.errors import ConfigurationAppError
from review_api.ratelimit.guard import RateLimitGuard
from review_api.ratelimit.tiers import PolicyTier

GUARD_STATE_ATTR = "rate_limit_guard"
ROUTE_TIER_ATTR = "rate_limit_tier"


def guard_from_app(request: Request) -> RateLimitGuard:
    """Return the guard installed on the application.

    Raises:
        ConfigurationAppError: If no guard was installed.
    """
    guard = getattr(request.app.state, GUARD_STATE_ATTR, None)
    if guard is None:
        raise ConfigurationAppError(
            code="rate_limit_guard_missing",
            message="Rate limiting is not configured on this application",
            details={"hint": "Install a RateLimitGuard on app.state.rate_limit_guard"},
        )
    return guard


def _tier_of(dependant: Any) -> PolicyTier | None:
    for sub in getattr(dependant, "dependencies", ()):
        tier = getattr(sub.call, ROUTE_TIER_ATTR, None) or _tier_of(sub)
        if tier is not None:
            return tier
    return None


def declared_tier(request: Request) -> PolicyTier | None:
    """Return the tier declared by the route the request will reach.

    Routes are matched the way the router matches them: the first full match
    wins. Router-level dependencies are part of each route's dependant.
    """
    router = getattr(request.app, "router", None)
    for route in getattr(router, "routes", ()):
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return _tier_of(getattr(route, "dependant", None))
    return None


def _normalize_prefix(prefix: str) -> str:
    return "/" + prefix.strip("/") if prefix.strip("/") else "/"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply ``RateLimitGuard.wrap`` to every request under the given prefixes."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        guard: RateLimitGuard | None = None,
        prefixes: Iterable[str] = ("/api",),
        tier: PolicyTier | None = None,
        skip_successful_headers: bool = False,
    ) -> None:
        super().__init__(app)
        self._guard = guard
        self._prefixes = tuple(_normalize_prefix(p) for p in prefixes)
        self._tier = tier
        self._skip_successful_headers = skip_successful_headers

    def is_protected(self, path: str) -> bool:
        for prefix in self._prefixes:
            if prefix == "/" or path == prefix or path.startswith(prefix + "/"):
                return True
        return False

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.is_protected(request.url.path):
            return await call_next(request)

        guard = self._guard or guard_from_app(request)
        handler = guard.wrap(
            call_next,
            tier=declared_tier(request) or self._tier,
            skip_successful_headers=self._skip_successful_headers,
        )
        return await handler(request)
