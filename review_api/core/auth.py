"""Admin key check for the rate limit administration endpoints.

End-user authentication belongs to the external identity provider. The only
credential handled here is the shared admin key that protects the endpoints
able to inspect and reset other clients' quotas.

Keys are validated against a comma-separated list from ``APP_ADMIN_KEYS``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Annotated

from fastapi import Header, HTTPException, status

from review_api.core.config import settings
from review_api.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def parse_admin_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated admin keys into a set.

    Examples:
        >>> sorted(parse_admin_keys("key1, key2 ,key3 "))
        ['key1', 'key2', 'key3']
        >>> parse_admin_keys(None)
        set()
    """
    if not keys_string:
        return set()
    return {key.strip() for key in keys_string.split(",") if key.strip()}


def _key_hash(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def validate_admin_key(provided_key: str) -> None:
    """Validate the provided admin key against configured keys.

    Raises:
        AuthenticationAppError: If the key is invalid, or checks are required
            but no keys are configured.
    """
    if not settings.app.admin_key_required:
        return

    valid_keys = parse_admin_keys(settings.app.admin_keys)
    if not valid_keys:
        logger.error(
            "admin_key_validation_failed",
            extra={"reason": "admin_keys_not_configured"},
        )
        raise AuthenticationAppError(
            code="admin_keys_not_configured",
            message="Admin key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_ADMIN_KEYS or disable with APP_ADMIN_KEY_REQUIRED=false"},
        )

    if not any(hmac.compare_digest(provided_key, key) for key in valid_keys):
        logger.warning(
            "admin_key_validation_failed",
            extra={"reason": "invalid_admin_key", "admin_key_hash": _key_hash(provided_key)},
        )
        raise AuthenticationAppError(
            code="invalid_admin_key",
            message="Invalid or missing admin key",
        )


async def verify_admin_key(
    x_admin_key: Annotated[str | None, Header(alias="X-Admin-Key")] = None,
) -> None:
    """FastAPI dependency guarding admin routes with the X-Admin-Key header.

    Raises:
        HTTPException: 403 Forbidden if the key is missing or invalid.
    """
    if not settings.app.admin_key_required:
        logger.debug("admin_auth.skipped", extra={"reason": "admin_key_required_false"})
        return

    if not x_admin_key:
        logger.warning("admin_auth.missing_key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing admin key. Provide X-Admin-Key header.",
        )

    try:
        validate_admin_key(x_admin_key)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc
