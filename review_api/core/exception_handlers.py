"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceededError → 429 with the rate limit body and quota headers
  (same shape the rate limit middleware produces)
- Other AppError subclasses → 400 / 403 / 500 with ``{"error": {...}}``
- Unexpected Exception → generic 500 (safety net)
- Error responses include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from review_api.core.errors import (
    AppError,
    AuthenticationAppError,
    ConfigurationAppError,
    CounterStoreError,
    RateLimitExceededError,
)
from review_api.core.logging import get_request_id
from review_api.ratelimit.limiter import AdmissionDecision
from review_api.ratelimit.responses import rejection_body, rejection_headers

logger = logging.getLogger(__name__)


def _status_for(exc: AppError) -> int:
    if isinstance(exc, AuthenticationAppError):
        return 403
    if isinstance(exc, (ConfigurationAppError, CounterStoreError)):
        return 500
    return 400


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Render a quota rejection raised from a route dependency.

    Args:
        request: FastAPI request object.
        exc: The rejection, with quota numbers in ``details``.

    Returns:
        JSONResponse with status 429, the rate limit body, X-RateLimit-*
        headers and Retry-After.
    """
    details = exc.details or {}
    retry_after = max(0, int(details.get("retry_after", 0)))
    decision = AdmissionDecision(
        allowed=False,
        limit=int(details.get("limit", 0)),
        remaining=int(details.get("remaining", 0)),
        reset_at=int(details.get("reset_at", 0)),
    )
    return JSONResponse(
        status_code=429,
        content=rejection_body(exc.message, retry_after),
        headers=rejection_headers(decision, retry_after),
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to HTTP status codes:
    - AuthenticationAppError → 403 Forbidden
    - ConfigurationAppError, CounterStoreError → 500 (server fault)

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with ``error.code``, ``error.message``,
        ``error.request_id`` and optional ``error.details``.
    """
    status_code = _status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    # Server faults never expose internal details
    if exc.details and status_code < 500:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the failure and returns a generic message without stack traces or
    exception text.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Starlette picks the handler of the closest class in the exception's MRO,
    so the rate limit handler wins over the generic AppError one.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
