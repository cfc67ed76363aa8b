"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    http_status: int
    tier: str
    limit: int
    remaining: int
    reset_at: int
    retry_after: int
    backend: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class ConfigurationAppError(AppError):
    """Raised at startup when the rate limit policy table or store config is unusable."""


class CounterStoreError(AppError):
    """Raised when the counter store times out, is unreachable or answers garbage."""


class RateLimitExceededError(AppError):
    """Raised by the route dependency when a client exhausted its quota.

    ``details`` always carries ``limit``, ``remaining``, ``reset_at`` and
    ``retry_after`` so the handler can render quota headers.
    """
