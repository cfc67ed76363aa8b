"""Unit tests for the Redis counter store adapter (Redis client mocked)."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from review_api.adapters.counter_store.redis_store import RedisCounterStore
from review_api.core.errors import CounterStoreError


def _client(script_result=1) -> tuple[MagicMock, AsyncMock]:
    client = MagicMock()
    script = AsyncMock(return_value=script_result)
    client.register_script.return_value = script
    return client, script


def _scan(keys):
    async def _gen(**_kwargs):
        for key in keys:
            yield key

    return MagicMock(side_effect=_gen)


class TestIncr:
    def test_runs_atomic_script_with_key_and_ttl(self) -> None:
        client, script = _client(script_result=3)
        store = RedisCounterStore(client)

        assert asyncio.run(store.incr("ratelimit:api:1.2.3.4:10", 60)) == 3
        script.assert_awaited_once_with(keys=["ratelimit:api:1.2.3.4:10"], args=[60])

    def test_script_sets_expiry_only_on_first_increment(self) -> None:
        client, _ = _client()
        RedisCounterStore(client)

        lua = client.register_script.call_args.args[0]
        assert "INCR" in lua
        assert "if count == 1 then" in lua
        assert "EXPIRE" in lua

    def test_connection_error_becomes_store_error(self) -> None:
        client, script = _client()
        script.side_effect = RedisConnectionError("connection refused")
        store = RedisCounterStore(client)

        with pytest.raises(CounterStoreError) as exc_info:
            asyncio.run(store.incr("k", 60))

        assert exc_info.value.code == "counter_store_unavailable"

    def test_timeout_becomes_store_error(self) -> None:
        client, script = _client()

        async def _slow(**_kwargs):
            await asyncio.sleep(1)
            return 1

        script.side_effect = _slow
        store = RedisCounterStore(client, timeout_seconds=0.01)

        with pytest.raises(CounterStoreError) as exc_info:
            asyncio.run(store.incr("k", 60))

        assert exc_info.value.code == "counter_store_timeout"

    def test_malformed_reply_becomes_store_error(self) -> None:
        client, _ = _client(script_result="not-a-number")
        store = RedisCounterStore(client)

        with pytest.raises(CounterStoreError) as exc_info:
            asyncio.run(store.incr("k", 60))

        assert exc_info.value.code == "counter_store_malformed_response"

    def test_rejects_invalid_arguments(self) -> None:
        client, _ = _client()
        store = RedisCounterStore(client)

        with pytest.raises(ValueError):
            asyncio.run(store.incr("", 60))
        with pytest.raises(ValueError):
            asyncio.run(store.incr("k", 0))


class TestReadsAndResets:
    def test_get_parses_count_and_missing_key(self) -> None:
        client, _ = _client()
        client.get = AsyncMock(side_effect=["7", None])
        store = RedisCounterStore(client)

        assert asyncio.run(store.get("k")) == 7
        assert asyncio.run(store.get("k")) == 0

    def test_delete_prefix_scans_with_escaped_pattern(self) -> None:
        client, _ = _client()
        client.scan_iter = _scan(["rl:api:a[1]:1", "rl:api:a[1]:2"])
        client.delete = AsyncMock(return_value=2)
        store = RedisCounterStore(client)

        assert asyncio.run(store.delete_prefix("rl:api:a[1]:")) == 2
        client.scan_iter.assert_called_once_with(match=r"rl:api:a\[1\]:*", count=500)
        client.delete.assert_awaited_once_with("rl:api:a[1]:1", "rl:api:a[1]:2")

    def test_delete_prefix_without_matches_skips_delete(self) -> None:
        client, _ = _client()
        client.scan_iter = _scan([])
        client.delete = AsyncMock()
        store = RedisCounterStore(client)

        assert asyncio.run(store.delete_prefix("rl:")) == 0
        client.delete.assert_not_awaited()


class TestConnectivity:
    def test_ping_true_when_server_answers(self) -> None:
        client, _ = _client()
        client.ping = AsyncMock(return_value=True)

        assert asyncio.run(RedisCounterStore(client).ping()) is True

    def test_ping_false_instead_of_raising(self) -> None:
        client, _ = _client()
        client.ping = AsyncMock(side_effect=RedisConnectionError("down"))

        assert asyncio.run(RedisCounterStore(client).ping()) is False

    def test_close_releases_client(self) -> None:
        client, _ = _client()
        client.aclose = AsyncMock()

        asyncio.run(RedisCounterStore(client).close())

        client.aclose.assert_awaited_once()

    def test_from_url_bounds_socket_timeouts(self) -> None:
        with patch("review_api.adapters.counter_store.redis_store.Redis") as redis_cls:
            redis_cls.from_url.return_value = _client()[0]

            RedisCounterStore.from_url("redis://cache:6379/1", timeout_seconds=0.25)

        redis_cls.from_url.assert_called_once_with(
            "redis://cache:6379/1",
            decode_responses=True,
            socket_timeout=0.25,
            socket_connect_timeout=0.25,
        )

    def test_non_positive_timeout_rejected(self) -> None:
        with pytest.raises(ValueError):
            RedisCounterStore(_client()[0], timeout_seconds=0)
