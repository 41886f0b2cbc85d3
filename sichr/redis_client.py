"""Async Redis client wrapper with connection tracking and fail-open operations.

This module owns the only connection to Redis. Everything above it (the
category cache, counters, leaderboards, response caching) talks to Redis
through AsyncRedisClient and never sees a transport error: every operation
returns its "absent" value (None, False, 0, [] or {}) when Redis is down.

Architecture:
    - RedisConfig: settings loaded from environment variables
    - ConnectionState: DISCONNECTED -> CONNECTING -> READY, and back to
      DISCONNECTED on any transport error
    - AsyncRedisClient: redis.asyncio client with per-command retries
      (exponential backoff) and a rate-limited reconnect probe

Usage:
    # In FastAPI lifespan
    redis = AsyncRedisClient(RedisConfig())
    await redis.connect()

    # In application code
    await redis.set_with_ttl("key", "value", 300)
    value = await redis.get("key")

    # On shutdown
    await redis.close()
"""

import os
import time
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from redis import asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import (
    RedisError,
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
)
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that mean the connection itself is gone, not just the command
_TRANSPORT_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisConfig:
    """Configuration for the Redis connection.

    Loads settings from environment variables with sensible defaults.
    """

    def __init__(self):
        """Initialize Redis configuration from environment variables."""
        self.host = os.getenv("REDIS_HOST", "localhost")
        self.port = int(os.getenv("REDIS_PORT", "6379"))
        self.db = int(os.getenv("REDIS_DB", "0"))
        self.password = os.getenv("REDIS_PASSWORD", None)
        self.max_connections = int(os.getenv("REDIS_MAX_CONNECTIONS", "10"))
        self.socket_timeout = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))
        self.socket_connect_timeout = int(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "5"))
        self.retry_on_timeout = os.getenv("REDIS_RETRY_ON_TIMEOUT", "true").lower() == "true"
        self.max_retries = int(os.getenv("REDIS_MAX_RETRIES", "3"))
        self.retry_backoff = float(os.getenv("REDIS_RETRY_BACKOFF", "0.1"))
        self.lazy_connect = os.getenv("REDIS_LAZY_CONNECT", "false").lower() == "true"
        self.reconnect_interval = float(os.getenv("REDIS_RECONNECT_INTERVAL", "5"))

    def get_url(self) -> str:
        """Build the redis:// URL (password and db index included)."""
        redis_url = "redis://"
        if self.password:
            redis_url += f":{self.password}@"
        redis_url += f"{self.host}:{self.port}/{self.db}"
        return redis_url

    def __repr__(self) -> str:
        """String representation (safe - no password)."""
        return (
            f"RedisConfig("
            f"host={self.host}, "
            f"port={self.port}, "
            f"db={self.db}, "
            f"max_connections={self.max_connections}, "
            f"max_retries={self.max_retries})"
        )


class ConnectionState(str, Enum):
    """Connectivity of the Redis adapter."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


def parse_info(info_text: Union[str, bytes]) -> Dict[str, str]:
    """
    Parse the raw text reply of the INFO command.

    Lines look like "used_memory:1024"; section headers start with "#".
    Blank lines, headers and lines without a colon are skipped. The value is
    everything after the first colon.

    Example:
        >>> parse_info("# Memory\\r\\nused_memory:1024\\r\\nused_memory_human:1.00K\\r\\n")
        {'used_memory': '1024', 'used_memory_human': '1.00K'}
    """
    if isinstance(info_text, bytes):
        info_text = info_text.decode("utf-8", errors="replace")

    info = {}
    for line in info_text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or ":" not in line:
            continue
        key, value = line.split(":", 1)
        info[key] = value
    return info


class AsyncRedisClient:
    """Async Redis adapter with connectivity tracking.

    Each public operation is a no-op returning its absent value when the
    adapter is not READY. A transport error during a command moves the
    adapter to DISCONNECTED; the next operation after reconnect_interval
    seconds probes Redis with PING and resumes on success.

    Example:
        redis = AsyncRedisClient(RedisConfig())
        await redis.connect()

        await redis.set_with_ttl("sichr:apartments:42", payload, 900)
        payload = await redis.get("sichr:apartments:42")
        removed = await redis.delete_pattern("sichr:apartments:*")
    """

    def __init__(
        self,
        config: Optional[RedisConfig] = None,
        client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize the adapter.

        Args:
            config: Connection settings (defaults to RedisConfig())
            client: Pre-built redis.asyncio client (tests inject doubles here)
        """
        self.config = config or RedisConfig()
        self.client = client
        self.state = ConnectionState.DISCONNECTED
        self._last_attempt: Optional[float] = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        """Whether commands will currently be sent to Redis."""
        return self.state is ConnectionState.READY

    def _build_client(self) -> aioredis.Redis:
        retry = Retry(
            ExponentialBackoff(cap=self.config.retry_backoff * 10, base=self.config.retry_backoff),
            self.config.max_retries,
        )
        return aioredis.from_url(
            self.config.get_url(),
            max_connections=self.config.max_connections,
            socket_timeout=self.config.socket_timeout,
            socket_connect_timeout=self.config.socket_connect_timeout,
            retry_on_timeout=self.config.retry_on_timeout,
            retry=retry,
            decode_responses=True,  # Return strings instead of bytes
        )

    async def connect(self) -> bool:
        """
        Create the client and verify the connection.

        Never raises: a failed connection leaves the adapter DISCONNECTED and
        the cache layer simply stays inactive until a probe succeeds.

        Returns:
            True if Redis answered PING, False otherwise (or when
            lazy_connect defers the first PING to the first operation)
        """
        if self.client is None:
            try:
                self.client = self._build_client()
            except Exception as e:
                logger.error(f"✗ Failed to create Redis client: {e}", exc_info=True)
                self.state = ConnectionState.DISCONNECTED
                return False

        if self.config.lazy_connect:
            logger.info(f"Redis client created (lazy connect) with config: {self.config}")
            return False

        logger.info(f"Connecting to Redis with config: {self.config}")
        return await self._probe()

    async def _probe(self) -> bool:
        self.state = ConnectionState.CONNECTING
        self._last_attempt = time.monotonic()

        try:
            await self.client.ping()
        except (RedisError, OSError) as e:
            self.state = ConnectionState.DISCONNECTED
            logger.warning(f"Redis unavailable, caching disabled: {e}")
            return False
        except BaseException:
            # Cancelled mid-probe: leave the next probe due after the interval
            self.state = ConnectionState.DISCONNECTED
            raise

        self.state = ConnectionState.READY
        logger.info(f"✓ Redis connected: {self.config.host}:{self.config.port} db={self.config.db}")
        return True

    async def ensure_ready(self) -> bool:
        """Return True if READY, probing first when a reconnect is due."""
        if self.state is ConnectionState.READY:
            return True
        if self.client is None or self.state is ConnectionState.CONNECTING:
            return False
        if (
            self._last_attempt is not None
            and time.monotonic() - self._last_attempt < self.config.reconnect_interval
        ):
            return False
        return await self._probe()

    def _mark_disconnected(self, error: Exception) -> None:
        if self.state is ConnectionState.READY:
            logger.error(f"Redis connection lost: {error}")
        self.state = ConnectionState.DISCONNECTED
        self._last_attempt = time.monotonic()

    async def _execute(
        self,
        operation: str,
        default: T,
        command: Callable[[], Awaitable[T]],
    ) -> T:
        """Run a command, converting every failure into `default`."""
        if not await self.ensure_ready():
            return default

        try:
            return await command()
        except _TRANSPORT_ERRORS as e:
            self._mark_disconnected(e)
            return default
        except Exception as e:
            logger.error(f"Redis {operation} failed: {e}", exc_info=True)
            return default

    async def ping(self) -> bool:
        """
        Check if Redis server is reachable.

        Returns:
            True if server responds to ping, False otherwise
        """
        if self.client is None:
            return False
        try:
            result = await self.client.ping()
            logger.debug("Redis ping successful")
            return bool(result)
        except (RedisError, OSError) as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        """Close the client and its connection pool."""
        if self.client is None:
            logger.info("Redis client is not initialized, nothing to close")
            return

        try:
            await self.client.aclose()
            logger.info("✓ Redis connection closed")
        except (RedisError, OSError) as e:
            logger.error(f"Error closing Redis connection: {e}", exc_info=True)
        finally:
            self.client = None
            self.state = ConnectionState.DISCONNECTED

    async def health(self) -> dict:
        """
        Report the health of the Redis connection.

        Returns:
            dict with status ("healthy", "degraded" or "unavailable"), host,
            port, db and connection state
        """
        details = {
            "host": self.config.host,
            "port": self.config.port,
            "db": self.config.db,
            "state": self.state.value,
        }

        if self.client is None:
            return {"status": "unavailable", "error": "Client not initialized", **details}

        if await self.ping():
            if self.state is not ConnectionState.READY:
                self.state = ConnectionState.READY
            return {"status": "healthy", **details}

        return {"status": "degraded", **details}

    # ------------------------------------------------------------------
    # Key/value operations
    # ------------------------------------------------------------------

    async def set_with_ttl(self, key: str, value: str, ttl: int) -> bool:
        """
        Store a value that expires after `ttl` seconds.

        Returns:
            True if Redis accepted the write, False otherwise
        """
        async def _setex():
            await self.client.setex(key, ttl, value)
            logger.debug(f"Cache SET: {key} (ttl={ttl})")
            return True

        return await self._execute("SETEX", False, _setex)

    async def get(self, key: str) -> Optional[str]:
        """
        Get a value.

        Returns:
            The stored string, or None on miss or when Redis is unavailable
        """
        async def _get():
            value = await self.client.get(key)
            if value is not None:
                logger.debug(f"Cache HIT: {key}")
            else:
                logger.debug(f"Cache MISS: {key}")
            return value

        return await self._execute("GET", None, _get)

    async def delete(self, *keys: str) -> int:
        """
        Delete one or more keys.

        Returns:
            Number of keys deleted
        """
        if not keys:
            return 0

        async def _delete():
            count = await self.client.delete(*keys)
            logger.debug(f"Cache DELETE: {keys} (count={count})")
            return int(count)

        return await self._execute("DEL", 0, _delete)

    async def delete_pattern(self, pattern: str) -> Optional[int]:
        """
        Delete all keys matching a glob pattern.

        Matching keys are enumerated with SCAN first and then removed with a
        single DEL. No match is not an error.

        Returns:
            Number of keys actually deleted (0 when nothing matched), or None
            when Redis is unavailable or the SCAN/DEL failed
        """
        async def _delete_pattern():
            keys = [key async for key in self.client.scan_iter(match=pattern, count=100)]
            if not keys:
                logger.debug(f"No keys matched pattern: {pattern}")
                return 0
            count = await self.client.delete(*keys)
            logger.info(f"Deleted {count} keys matching pattern: {pattern}")
            return int(count)

        return await self._execute("DEL pattern", None, _delete_pattern)

    async def increment(self, key: str, amount: int, expire_seconds: int) -> int:
        """
        Atomically add `amount` to an integer and (re)set its expiry.

        The expiry is applied after every increment, so the counter lives
        `expire_seconds` past its most recent update.

        Returns:
            The new value, or 0 when Redis is unavailable
        """
        async def _incr():
            value = await self.client.incrby(key, amount)
            await self.client.expire(key, expire_seconds)
            return int(value)

        return await self._execute("INCRBY", 0, _incr)

    # ------------------------------------------------------------------
    # Sorted sets
    # ------------------------------------------------------------------

    async def sorted_set_add(self, name: str, member: str, score: float) -> bool:
        """Insert or update a member's score."""
        async def _zadd():
            await self.client.zadd(name, {member: score})
            return True

        return await self._execute("ZADD", False, _zadd)

    async def sorted_set_top(self, name: str, count: int) -> List[Dict[str, Any]]:
        """
        Get the highest-scored members.

        Returns:
            List of {"member", "score"} dicts, highest score first
        """
        if count <= 0:
            return []

        async def _zrevrange():
            rows = await self.client.zrevrange(name, 0, count - 1, withscores=True)
            return [{"member": member, "score": float(score)} for member, score in rows]

        return await self._execute("ZREVRANGE", [], _zrevrange)

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    async def info(self, section: Optional[str] = None) -> Dict[str, Any]:
        """
        Get server diagnostics.

        redis-py already parses INFO replies into a dict; a raw text reply
        (e.g. from a proxy) is parsed with parse_info().
        """
        async def _info():
            raw = await self.client.info(section)
            if isinstance(raw, (str, bytes)):
                return parse_info(raw)
            return dict(raw)

        return await self._execute("INFO", {}, _info)

    async def flush(self) -> bool:
        """
        Delete all keys in the current database.

        Warning:
            This will delete ALL keys in the current database.
        """
        async def _flushdb():
            await self.client.flushdb()
            logger.warning("Redis database flushed - all keys deleted")
            return True

        return await self._execute("FLUSHDB", False, _flushdb)
