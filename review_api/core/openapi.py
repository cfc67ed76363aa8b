"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- Tags metadata
- The admin key security scheme (``X-Admin-Key``) on admin operations only
- A documented 429 response with quota headers on every rate limited path
"""

from __future__ import annotations

from typing import Any, Dict, Iterable

from fastapi import FastAPI

_QUOTA_HEADERS = {
    "X-RateLimit-Limit": {"description": "Requests allowed per window.", "schema": {"type": "integer"}},
    "X-RateLimit-Remaining": {"description": "Requests left in the window.", "schema": {"type": "integer"}},
    "X-RateLimit-Reset": {"description": "UNIX time when the window resets.", "schema": {"type": "integer"}},
}

_RATE_LIMITED_RESPONSE = {
    "description": "Rate limit exceeded.",
    "headers": {
        **_QUOTA_HEADERS,
        "Retry-After": {"description": "Seconds until the window resets.", "schema": {"type": "integer"}},
    },
    "content": {
        "application/json": {
            "schema": {
                "type": "object",
                "properties": {
                    "status": {"type": "string", "example": "error"},
                    "code": {"type": "string", "example": "rate_limited"},
                    "message": {"type": "string"},
                    "retryAfterSeconds": {"type": "integer"},
                },
            }
        }
    },
}


def _is_protected(path: str, prefixes: Iterable[str]) -> bool:
    for prefix in prefixes:
        base = "/" + prefix.strip("/")
        if base == "/" or path == base or path.startswith(base + "/"):
            return True
    return False


def apply_openapi_customizations(app: FastAPI, *, protected_prefixes: Iterable[str] = ("/api",)) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata, security and 429 docs."""

    prefixes = tuple(protected_prefixes)
    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {}).setdefault(
            "AdminKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-Admin-Key",
                "description": "Admin key for rate limit administration endpoints.",
            },
        )
        components.setdefault("responses", {}).setdefault("RateLimited", _RATE_LIMITED_RESPONSE)

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in (
            {"name": "Rate limit administration", "description": "Inspect, exercise and reset client quotas."},
            {"name": "Health", "description": "Liveness and readiness checks."},
        ):
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.startswith("/api/admin/"):
                    method_obj["security"] = [{"AdminKeyAuth": []}]
                if _is_protected(path, prefixes):
                    method_obj.setdefault("responses", {}).setdefault(
                        "429", {"$ref": "#/components/responses/RateLimited"}
                    )

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
