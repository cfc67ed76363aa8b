"""Client identification for rate limiting.

Behind a reverse proxy the transport address is the proxy itself, so the
forwarded headers are consulted first. Requests that cannot be attributed to
anyone share one sentinel bucket instead of escaping the limit.
"""

from __future__ import annotations

from starlette.requests import Request

UNKNOWN_CLIENT = "unknown"

# Checked in order after X-Forwarded-For
_SINGLE_VALUE_HEADERS = ("x-real-ip", "cf-connecting-ip")


def _first_forwarded(value: str | None) -> str | None:
    if not value:
        return None
    first = value.split(",")[0].strip()
    return first or None


def identify(request: Request, *, trust_forwarded: bool = True) -> str:
    """Derive the client key for a request.

    Args:
        request: Incoming request.
        trust_forwarded: Whether proxy headers may be used.

    Returns:
        The first X-Forwarded-For entry, X-Real-IP, CF-Connecting-IP, the
        remote address, or ``UNKNOWN_CLIENT``, whichever is found first.
    """

    if trust_forwarded:
        forwarded = _first_forwarded(request.headers.get("x-forwarded-for"))
        if forwarded:
            return forwarded
        for header in _SINGLE_VALUE_HEADERS:
            value = (request.headers.get(header) or "").strip()
            if value:
                return value

    client = request.client
    if client is not None and client.host:
        return client.host

    return UNKNOWN_CLIENT
