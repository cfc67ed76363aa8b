"""HTTP middleware for request ID propagation and correlation.

The middleware:
- Accepts an incoming request id header (``LOG_REQUEST_ID_HEADER``) or
  generates a UUID
- Stores it in contextvars so rate limit and error logs carry it
- Echoes it and the total request duration back in the response headers

It is registered outermost, so 429 responses produced by the rate limiter
carry the request id too.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from review_api.core.config import settings
from review_api.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a correlation id to the request context and the response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with ``<request id header>`` and
            ``X-Request-Duration-ms`` set.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
