"""Redis-backed counter store shared by every worker and host.

INCR and EXPIRE run inside one Lua script, so concurrent callers never lose
an update and a counter can never be left without a TTL. Every call is
bounded by a timeout; failures are reported as ``CounterStoreError``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from review_api.adapters.counter_store.base import AbstractCounterStore
from review_api.core.errors import CounterStoreError

logger = logging.getLogger(__name__)

_INCR_WITH_EXPIRY_LUA = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")

_SCAN_BATCH = 500


def _escape_glob(value: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", value)


def _to_count(value: Any, *, operation: str) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise CounterStoreError(
            code="counter_store_malformed_response",
            message=f"Counter store returned a non-integer value for {operation}",
            details={"backend": "redis", "context": {"value": repr(value)[:64]}},
        ) from exc


class RedisCounterStore(AbstractCounterStore):
    """Counter store on a Redis server (``redis.asyncio``)."""

    def __init__(self, client: Redis, *, timeout_seconds: float = 0.5) -> None:
        """Initialize the store.

        Args:
            client: Async Redis client (``decode_responses=True`` recommended).
            timeout_seconds: Upper bound for each store call.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._client = client
        self._timeout = timeout_seconds
        self._incr_script = client.register_script(_INCR_WITH_EXPIRY_LUA)

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 0.5) -> "RedisCounterStore":
        """Build a store with its own connection pool.

        Socket timeouts match the call timeout so a dead server cannot hold
        a connection longer than a single call is allowed to take.
        """
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client, timeout_seconds=timeout_seconds)

    async def _call(self, awaitable: Awaitable[Any], *, operation: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise CounterStoreError(
                code="counter_store_timeout",
                message=f"Counter store did not answer {operation} within {self._timeout}s",
                details={"backend": "redis"},
            ) from exc
        except (RedisError, OSError) as exc:
            raise CounterStoreError(
                code="counter_store_unavailable",
                message=f"Counter store {operation} failed: {type(exc).__name__}",
                details={"backend": "redis"},
            ) from exc

    async def incr(self, key: str, ttl_seconds: int) -> int:
        if not key:
            raise ValueError("key must be a non-empty string")
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")

        raw = await self._call(
            self._incr_script(keys=[key], args=[ttl_seconds]),
            operation="incr",
        )
        return _to_count(raw, operation="incr")

    async def get(self, key: str) -> int:
        raw = await self._call(self._client.get(key), operation="get")
        return _to_count(raw, operation="get")

    async def delete_prefix(self, prefix: str) -> int:
        pattern = f"{_escape_glob(prefix)}*"

        async def _collect() -> list[str]:
            return [k async for k in self._client.scan_iter(match=pattern, count=_SCAN_BATCH)]

        keys = await self._call(_collect(), operation="scan")
        if not keys:
            return 0
        deleted = await self._call(self._client.delete(*keys), operation="delete")
        return _to_count(deleted, operation="delete")

    async def ping(self) -> bool:
        try:
            await self._call(self._client.ping(), operation="ping")
        except CounterStoreError as exc:
            logger.warning(
                "counter_store.ping_failed",
                extra={"error_code": exc.code, "error_message": exc.message},
            )
            return False
        return True

    async def close(self) -> None:
        await self._client.aclose()
