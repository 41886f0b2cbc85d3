"""Pytest configuration and shared fixtures for SichrPlace backend tests.

This module provides:
- Custom markers
- An in-memory stand-in for the redis.asyncio client
- A READY AsyncRedisClient and a CacheService built on it
- Environment isolation between tests
"""

import fnmatch
import os
import sys
from pathlib import Path
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to Python path to allow imports from sichr
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from sichr.cache.service import CacheService
from sichr.redis_client import AsyncRedisClient, ConnectionState, RedisConfig


# ==================== Pytest Configuration ====================

def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers",
        "unit: mark test as a unit test (fast, isolated)"
    )
    config.addinivalue_line(
        "markers",
        "integration: mark test as an integration test (slower, multiple components)"
    )


# ==================== Environment Fixtures ====================

@pytest.fixture(scope="function", autouse=True)
def isolate_environment():
    """Isolate each test by preventing environment variable pollution."""
    original_env = os.environ.copy()

    yield

    os.environ.clear()
    os.environ.update(original_env)


# ==================== Redis Fixtures ====================

@pytest.fixture
def fake_redis() -> MagicMock:
    """In-memory replacement for a redis.asyncio client.

    Commands are AsyncMocks backed by a dict, so tests can both inspect the
    stored data (`fake_redis.store`, `fake_redis.ttls`) and assert on calls
    or inject failures through `side_effect`.
    """
    store: Dict[str, Any] = {}
    ttls: Dict[str, int] = {}

    async def setex(key, ttl, value):
        store[key] = value
        ttls[key] = ttl
        return True

    async def get(key):
        value = store.get(key)
        return value if value is None or isinstance(value, str) else None

    async def delete(*keys):
        removed = 0
        for key in keys:
            if key in store:
                del store[key]
                ttls.pop(key, None)
                removed += 1
        return removed

    async def scan(match=None, count=None):
        for key in list(store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def incrby(key, amount):
        value = int(store.get(key, 0)) + amount
        store[key] = str(value)
        return value

    async def expire(key, seconds):
        if key not in store:
            return False
        ttls[key] = seconds
        return True

    async def zadd(name, mapping):
        members = store.setdefault(name, {})
        members.update(mapping)
        return len(mapping)

    async def zrevrange(name, start, end, withscores=False):
        members = sorted(store.get(name, {}).items(), key=lambda item: item[1], reverse=True)
        selected = members[start:end + 1]
        return selected if withscores else [member for member, _ in selected]

    async def info(section=None):
        if section == "memory":
            return {"used_memory": 1024, "used_memory_human": "1.00K"}
        if section == "keyspace":
            return {"db0": {"keys": len(store), "expires": len(ttls)}}
        return {}

    async def flushdb():
        store.clear()
        ttls.clear()
        return True

    client = MagicMock()
    client.store = store
    client.ttls = ttls
    client.setex = AsyncMock(side_effect=setex)
    client.get = AsyncMock(side_effect=get)
    client.delete = AsyncMock(side_effect=delete)
    client.scan_iter = MagicMock(side_effect=scan)
    client.incrby = AsyncMock(side_effect=incrby)
    client.expire = AsyncMock(side_effect=expire)
    client.zadd = AsyncMock(side_effect=zadd)
    client.zrevrange = AsyncMock(side_effect=zrevrange)
    client.info = AsyncMock(side_effect=info)
    client.flushdb = AsyncMock(side_effect=flushdb)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock(return_value=None)
    return client


@pytest.fixture
def redis_adapter(fake_redis) -> AsyncRedisClient:
    """AsyncRedisClient in READY state on top of fake_redis."""
    adapter = AsyncRedisClient(RedisConfig(), client=fake_redis)
    adapter.state = ConnectionState.READY
    return adapter


@pytest.fixture
def cache_service(redis_adapter) -> CacheService:
    """CacheService on a READY in-memory Redis."""
    return CacheService(redis_adapter)


@pytest.fixture
def down_cache_service(fake_redis, monkeypatch) -> CacheService:
    """CacheService whose Redis refuses every connection."""
    from redis.exceptions import ConnectionError as RedisConnectionError

    monkeypatch.setenv("REDIS_RECONNECT_INTERVAL", "3600")
    fake_redis.ping.side_effect = RedisConnectionError("Connection refused")
    adapter = AsyncRedisClient(RedisConfig(), client=fake_redis)
    return CacheService(adapter)
