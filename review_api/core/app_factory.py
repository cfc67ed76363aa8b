from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (rate limit guard, middleware, handlers,
routers) so tests can build apps with their own guard and store.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from review_api.api.routes import health_router, rate_limit_admin_router
from review_api.core.config import settings
from review_api.core.exception_handlers import setup_exception_handlers
from review_api.core.logging import configure_logging
from review_api.core.middleware import request_id_middleware
from review_api.core.openapi import apply_openapi_customizations
from review_api.core.rate_limit import build_rate_limit_guard
from review_api.ratelimit.guard import RateLimitGuard
from review_api.ratelimit.middleware import GUARD_STATE_ATTR, RateLimitMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    guard: RateLimitGuard = getattr(app.state, GUARD_STATE_ATTR)
    await guard.registry.store.close()
    logger.info("counter_store.closed")


def create_app(guard: RateLimitGuard | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    The rate limit policy is built before anything is served: an incomplete
    tier table or an unknown counter store backend raises
    ``ConfigurationAppError`` here and the process does not start.

    Args:
        guard: Pre-built guard (tests); built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    rate_limit_guard = guard or build_rate_limit_guard(settings)
    prefixes = settings.rate_limit.prefixes()

    app = FastAPI(
        title="Review API",
        description=(
            "Property review API. Public /api routes are rate limited per client "
            "and policy tier; every response carries X-RateLimit-* quota headers "
            "and rejected calls return HTTP 429 with a Retry-After hint."
        ),
        version="0.1.0",
        lifespan=_lifespan,
    )
    setattr(app.state, GUARD_STATE_ATTR, rate_limit_guard)

    # Middleware (last added runs first)
    if prefixes:
        app.add_middleware(RateLimitMiddleware, prefixes=prefixes)
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limit_admin_router)
    app.include_router(health_router)

    # OpenAPI customizations (admin security scheme, 429 docs, tags)
    apply_openapi_customizations(app, protected_prefixes=prefixes)

    return app
