"""Unit tests for the async Redis adapter (sichr/redis_client.py).

This module tests:
- RedisConfig initialization from the environment
- INFO text parsing
- Connection state transitions (connect, lazy connect, reconnect probes)
- Fail-open behaviour of every operation
- Key/value, pattern delete, counter and sorted-set operations
- Health reporting and shutdown
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError, TimeoutError as RedisTimeoutError

from sichr import redis_client
from sichr.redis_client import AsyncRedisClient, ConnectionState, RedisConfig, parse_info


@pytest.fixture
def mock_redis_env(monkeypatch):
    """Provide mock Redis environment variables."""
    monkeypatch.setenv("REDIS_HOST", "cache.internal")
    monkeypatch.setenv("REDIS_PORT", "6380")
    monkeypatch.setenv("REDIS_DB", "2")
    monkeypatch.setenv("REDIS_PASSWORD", "test_password")
    monkeypatch.setenv("REDIS_MAX_RETRIES", "5")
    monkeypatch.setenv("REDIS_LAZY_CONNECT", "true")
    monkeypatch.setenv("REDIS_RECONNECT_INTERVAL", "30")


# ==================== RedisConfig Tests ====================


@pytest.mark.unit
def test_redis_config_from_env(mock_redis_env):
    config = RedisConfig()

    assert config.host == "cache.internal"
    assert config.port == 6380
    assert config.db == 2
    assert config.password == "test_password"
    assert config.max_retries == 5
    assert config.lazy_connect is True
    assert config.reconnect_interval == 30


@pytest.mark.unit
def test_redis_config_defaults(monkeypatch):
    for var in ["REDIS_HOST", "REDIS_PORT", "REDIS_DB", "REDIS_PASSWORD",
                "REDIS_MAX_RETRIES", "REDIS_LAZY_CONNECT", "REDIS_RECONNECT_INTERVAL"]:
        monkeypatch.delenv(var, raising=False)

    config = RedisConfig()

    assert config.host == "localhost"
    assert config.port == 6379
    assert config.db == 0
    assert config.password is None
    assert config.max_retries == 3
    assert config.lazy_connect is False
    assert config.get_url() == "redis://localhost:6379/0"


@pytest.mark.unit
def test_redis_config_url_and_repr(mock_redis_env):
    config = RedisConfig()

    assert config.get_url() == "redis://:test_password@cache.internal:6380/2"
    assert "test_password" not in repr(config)
    assert "cache.internal" in repr(config)


# ==================== parse_info ====================


@pytest.mark.unit
def test_parse_info_skips_headers_blanks_and_garbage():
    raw = "# Memory\r\nused_memory:1024\r\n\r\nnot a pair\r\nused_memory_human:1.00K\r\n"

    assert parse_info(raw) == {"used_memory": "1024", "used_memory_human": "1.00K"}


@pytest.mark.unit
def test_parse_info_splits_on_first_colon_only():
    assert parse_info(b"db0:keys=3,expires=1\nexecutable:/usr/bin/redis:server") == {
        "db0": "keys=3,expires=1",
        "executable": "/usr/bin/redis:server",
    }


# ==================== Connection lifecycle ====================


@pytest.mark.asyncio
@pytest.mark.unit
async def test_connect_success_sets_ready(fake_redis):
    adapter = AsyncRedisClient(RedisConfig(), client=fake_redis)

    assert await adapter.connect() is True
    assert adapter.state is ConnectionState.READY
    assert adapter.is_ready


@pytest.mark.asyncio
@pytest.mark.unit
async def test_connect_failure_never_raises(fake_redis):
    fake_redis.ping.side_effect = RedisConnectionError("Connection refused")
    adapter = AsyncRedisClient(RedisConfig(), client=fake_redis)

    assert await adapter.connect() is False
    assert adapter.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_lazy_connect_defers_ping(fake_redis, monkeypatch):
    monkeypatch.setenv("REDIS_LAZY_CONNECT", "true")
    adapter = AsyncRedisClient(RedisConfig(), client=fake_redis)

    assert await adapter.connect() is False
    fake_redis.ping.assert_not_called()

    # First operation probes and proceeds
    assert await adapter.set_with_ttl("k", "v", 10) is True
    assert adapter.is_ready
    fake_redis.ping.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_connect_builds_client_from_config(monkeypatch):
    built = AsyncMock()
    built.ping = AsyncMock(return_value=True)
    from_url = MagicMock(return_value=built)
    monkeypatch.setattr(redis_client.aioredis, "from_url", from_url)

    adapter = AsyncRedisClient(RedisConfig())
    assert await adapter.connect() is True

    url = from_url.call_args.args[0]
    kwargs = from_url.call_args.kwargs
    assert url == RedisConfig().get_url()
    assert kwargs["decode_responses"] is True
    assert kwargs["retry"] is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_transport_error_marks_disconnected(redis_adapter, fake_redis):
    fake_redis.get.side_effect = RedisConnectionError("Connection reset")

    assert await redis_adapter.get("k") is None
    assert redis_adapter.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_timeout_marks_disconnected(redis_adapter, fake_redis):
    fake_redis.setex.side_effect = RedisTimeoutError("Timeout")

    assert await redis_adapter.set_with_ttl("k", "v", 10) is False
    assert redis_adapter.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_command_error_keeps_connection(redis_adapter, fake_redis):
    fake_redis.incrby.side_effect = ResponseError("value is not an integer")

    assert await redis_adapter.increment("k", 1, 60) == 0
    assert redis_adapter.is_ready


@pytest.mark.asyncio
@pytest.mark.unit
async def test_disconnected_operations_short_circuit(redis_adapter, fake_redis):
    fake_redis.get.side_effect = RedisConnectionError("Connection reset")
    await redis_adapter.get("k")
    fake_redis.get.reset_mock()

    # Within reconnect_interval nothing is sent to Redis
    assert await redis_adapter.get("k") is None
    assert await redis_adapter.delete("k") == 0
    assert await redis_adapter.sorted_set_top("s", 5) == []
    assert await redis_adapter.info("memory") == {}
    fake_redis.get.assert_not_called()
    fake_redis.ping.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reconnect_probe_after_interval(redis_adapter, fake_redis):
    fake_redis.get.side_effect = RedisConnectionError("Connection reset")
    await redis_adapter.get("k")
    assert redis_adapter.state is ConnectionState.DISCONNECTED

    fake_redis.get.side_effect = None
    fake_redis.get.return_value = "value"
    redis_adapter._last_attempt -= redis_adapter.config.reconnect_interval + 1

    assert await redis_adapter.get("k") == "value"
    assert redis_adapter.is_ready
    fake_redis.ping.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancelled_probe_does_not_block_reconnects(fake_redis):
    ping_started = asyncio.Event()

    async def hanging_ping():
        ping_started.set()
        await asyncio.Event().wait()

    fake_redis.ping.side_effect = hanging_ping
    adapter = AsyncRedisClient(RedisConfig(), client=fake_redis)

    probe = asyncio.ensure_future(adapter.ensure_ready())
    await ping_started.wait()
    probe.cancel()
    with pytest.raises(asyncio.CancelledError):
        await probe

    assert adapter.state is ConnectionState.DISCONNECTED

    fake_redis.ping.side_effect = None
    fake_redis.ping.return_value = True
    adapter._last_attempt -= adapter.config.reconnect_interval + 1

    assert await adapter.ensure_ready() is True
    assert adapter.is_ready


@pytest.mark.asyncio
@pytest.mark.unit
async def test_operations_without_client_return_defaults():
    adapter = AsyncRedisClient(RedisConfig())

    assert await adapter.get("k") is None
    assert await adapter.set_with_ttl("k", "v", 1) is False
    assert await adapter.increment("k", 1, 1) == 0
    assert await adapter.flush() is False
    assert await adapter.ping() is False


# ==================== Operations ====================


@pytest.mark.asyncio
@pytest.mark.unit
async def test_set_get_delete(redis_adapter, fake_redis):
    assert await redis_adapter.set_with_ttl("k", "v", 42) is True
    assert fake_redis.ttls["k"] == 42
    assert await redis_adapter.get("k") == "v"
    assert await redis_adapter.delete("k") == 1
    assert await redis_adapter.get("k") is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_without_keys_is_noop(redis_adapter, fake_redis):
    assert await redis_adapter.delete() == 0
    fake_redis.delete.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_pattern_uses_single_bulk_delete(redis_adapter, fake_redis):
    for key in ["sichr:apartments:1", "sichr:apartments:2", "sichr:users:1"]:
        await redis_adapter.set_with_ttl(key, "x", 60)

    assert await redis_adapter.delete_pattern("sichr:apartments:*") == 2
    fake_redis.delete.assert_awaited_once()
    assert list(fake_redis.store) == ["sichr:users:1"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_pattern_no_match(redis_adapter, fake_redis):
    assert await redis_adapter.delete_pattern("sichr:none:*") == 0
    fake_redis.delete.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_pattern_reports_store_failure(redis_adapter, fake_redis):
    fake_redis.scan_iter.side_effect = ResponseError("unknown command 'SCAN'")

    assert await redis_adapter.delete_pattern("sichr:apartments:*") is None
    assert redis_adapter.is_ready


@pytest.mark.asyncio
@pytest.mark.unit
async def test_increment_refreshes_expiry(redis_adapter, fake_redis):
    assert await redis_adapter.increment("c", 5, 86400) == 5
    assert await redis_adapter.increment("c", 3, 86400) == 8
    assert fake_redis.expire.await_count == 2
    assert fake_redis.ttls["c"] == 86400


@pytest.mark.asyncio
@pytest.mark.unit
async def test_sorted_set_top_descending(redis_adapter):
    await redis_adapter.sorted_set_add("board", "a", 10)
    await redis_adapter.sorted_set_add("board", "b", 30)
    await redis_adapter.sorted_set_add("board", "c", 20)

    assert await redis_adapter.sorted_set_top("board", 2) == [
        {"member": "b", "score": 30.0},
        {"member": "c", "score": 20.0},
    ]
    assert await redis_adapter.sorted_set_top("board", 0) == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_info_parses_raw_text(redis_adapter, fake_redis):
    fake_redis.info.side_effect = None
    fake_redis.info.return_value = "# Memory\r\nused_memory:2048\r\n"

    assert await redis_adapter.info("memory") == {"used_memory": "2048"}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_flush(redis_adapter, fake_redis):
    await redis_adapter.set_with_ttl("k", "v", 60)

    assert await redis_adapter.flush() is True
    assert fake_redis.store == {}


# ==================== Health & shutdown ====================


@pytest.mark.asyncio
@pytest.mark.unit
async def test_health_states(redis_adapter, fake_redis):
    health = await redis_adapter.health()
    assert health["status"] == "healthy"
    assert health["port"] == redis_adapter.config.port

    fake_redis.ping.side_effect = RedisConnectionError("down")
    assert (await redis_adapter.health())["status"] == "degraded"

    assert (await AsyncRedisClient(RedisConfig()).health())["status"] == "unavailable"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_close(redis_adapter, fake_redis):
    await redis_adapter.close()

    fake_redis.aclose.assert_awaited_once()
    assert redis_adapter.client is None
    assert redis_adapter.state is ConnectionState.DISCONNECTED
