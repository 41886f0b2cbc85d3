"""Category cache service.

Combines key building, the TTL policy table and the Redis adapter into the
surface route handlers and services use: category-scoped set/get/delete,
category invalidation, counters, leaderboards and a handful of fixed-shape
wrappers for search results, sessions, geocoding, places and analytics.

Like the adapter underneath it, the service fails open: when Redis is down
every call returns its absent value and the caller falls through to the
authoritative data source.

Usage:
    cache = CacheService(redis)

    await cache.set("apartments", apartment_id, apartment)
    apartment = await cache.get("apartments", apartment_id)

    await cache.increment_counter("views", apartment_id)
    await cache.add_to_sorted_set("popular_apartments", apartment_id, score)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sichr.redis_client import AsyncRedisClient
from sichr.cache.keys import (
    analytics_key,
    build_key,
    category_pattern,
    counter_key,
    location_key,
    normalize_address,
    sorted_set_key,
)
from sichr.cache.serializer import (
    SerializationError,
    serialize_json,
    unwrap_envelope,
    wrap_envelope,
)
from sichr.cache.ttl import COUNTER_TTL, default_ttl

logger = logging.getLogger(__name__)


class CacheService:
    """
    Category-scoped cache on top of AsyncRedisClient.

    One instance is built at application startup and shared by everything
    that caches (see sichr.main).
    """

    def __init__(self, redis: AsyncRedisClient):
        self.redis = redis

    @property
    def is_connected(self) -> bool:
        """Whether the underlying Redis adapter is ready."""
        return self.redis.is_ready

    async def ensure_connected(self) -> bool:
        """Probe Redis if it is down (rate-limited) and report readiness."""
        return await self.redis.ensure_ready()

    # ========================================================================
    # Generic category operations
    # ========================================================================

    async def set(
        self,
        category: str,
        identifier: Any,
        data: Any,
        ttl: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Cache a value under a category.

        Args:
            category: Cache category; selects the default TTL
            identifier: Identifier within the category
            data: JSON-serializable value
            ttl: Expiration in seconds (defaults to the category TTL)
            params: Optional parameter bag folded into the key

        Returns:
            True if the value was written, False otherwise
        """
        key = build_key(category, identifier, params)
        expires = ttl if ttl is not None else default_ttl(category)

        try:
            value = wrap_envelope(data, category, identifier)
        except SerializationError as e:
            logger.error(f"Cannot cache {key}: {e}")
            return False

        stored = await self.redis.set_with_ttl(key, value, expires)
        if stored:
            logger.debug(f"Cached: {key} (TTL: {expires}s)")
        return stored

    async def get(
        self,
        category: str,
        identifier: Any,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        """
        Get a cached value.

        Returns:
            The cached data, or None on miss, when Redis is unavailable, or
            when the stored payload cannot be decoded
        """
        key = build_key(category, identifier, params)
        raw = await self.redis.get(key)

        if raw is None:
            return None

        try:
            return unwrap_envelope(raw)
        except SerializationError as e:
            logger.warning(f"Ignoring undecodable cache entry {key}: {e}")
            return None

    async def delete(
        self,
        category: str,
        identifier: Any,
        params: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Delete a cached value.

        Returns:
            True if an entry was removed
        """
        key = build_key(category, identifier, params)
        removed = await self.redis.delete(key)
        if removed:
            logger.debug(f"Cache deleted: {key}")
        return removed > 0

    async def clear_category(self, category: str) -> bool:
        """
        Delete every entry of a category.

        Returns:
            True when the category is now empty (also when nothing matched),
            False when Redis is unavailable or the store rejected SCAN/DEL
        """
        removed = await self.redis.delete_pattern(category_pattern(category))
        if removed is None:
            logger.warning(f"Failed to clear cache category: {category}")
            return False

        logger.info(f"Cleared {removed} cache entries for category: {category}")
        return True

    async def set_with_expiry(self, key: str, value: Any, seconds: int) -> bool:
        """
        Store a JSON value under a raw key, without the category envelope.
        """
        try:
            payload = serialize_json(value)
        except SerializationError as e:
            logger.error(f"Cannot cache {key}: {e}")
            return False
        return await self.redis.set_with_ttl(key, payload, seconds)

    # ========================================================================
    # Counters & rankings
    # ========================================================================

    async def increment_counter(self, category: str, identifier: Any, amount: int = 1) -> int:
        """
        Increment a counter; it expires one day after the latest increment.

        Returns:
            The new counter value (0 when Redis is unavailable)
        """
        return await self.redis.increment(counter_key(category, identifier), amount, COUNTER_TTL)

    async def get_counter(self, category: str, identifier: Any) -> int:
        """Get a counter value (0 if absent)."""
        raw = await self.redis.get(counter_key(category, identifier))
        try:
            return int(raw) if raw is not None else 0
        except (TypeError, ValueError):
            logger.warning(f"Counter {category}/{identifier} holds a non-integer value")
            return 0

    async def add_to_sorted_set(self, set_name: str, member: Any, score: float) -> bool:
        """Insert or update a member of a ranking."""
        return await self.redis.sorted_set_add(sorted_set_key(set_name), str(member), score)

    async def get_top_from_sorted_set(self, set_name: str, count: int = 10) -> List[Dict[str, Any]]:
        """Get the `count` highest-scored members, highest first."""
        return await self.redis.sorted_set_top(sorted_set_key(set_name), count)

    # ========================================================================
    # Convenience wrappers
    # ========================================================================

    async def cache_apartment_search(self, filters: Dict[str, Any], apartments: Any) -> bool:
        return await self.set("search", "apartments", apartments, params=filters)

    async def get_cached_apartment_search(self, filters: Dict[str, Any]) -> Optional[Any]:
        return await self.get("search", "apartments", filters)

    async def cache_user_session(self, user_id: Any, session_data: Any) -> bool:
        return await self.set("session", user_id, session_data)

    async def get_cached_user_session(self, user_id: Any) -> Optional[Any]:
        return await self.get("session", user_id)

    async def cache_geocoding_result(self, address: str, result: Any) -> bool:
        return await self.set("geocoding", normalize_address(address), result)

    async def get_cached_geocoding_result(self, address: str) -> Optional[Any]:
        return await self.get("geocoding", normalize_address(address))

    async def cache_nearby_places(
        self, lat: float, lng: float, place_type: str, radius: int, places: Any
    ) -> bool:
        return await self.set("places", location_key(lat, lng, place_type, radius), places)

    async def get_cached_nearby_places(
        self, lat: float, lng: float, place_type: str, radius: int
    ) -> Optional[Any]:
        return await self.get("places", location_key(lat, lng, place_type, radius))

    async def cache_analytics(self, metric: str, timeframe: str, data: Any) -> bool:
        return await self.set("analytics", analytics_key(metric, timeframe), data)

    async def get_cached_analytics(self, metric: str, timeframe: str) -> Optional[Any]:
        return await self.get("analytics", analytics_key(metric, timeframe))

    # ========================================================================
    # Management
    # ========================================================================

    async def get_cache_stats(self) -> Optional[Dict[str, Any]]:
        """
        Get memory and keyspace diagnostics from Redis.

        Returns:
            Dict with connected flag, memory_usage, keyspace and timestamp,
            or None when Redis is unavailable
        """
        memory = await self.redis.info("memory")
        keyspace = await self.redis.info("keyspace")

        if not self.is_connected:
            return None

        return {
            "connected": True,
            "memory_usage": memory,
            "keyspace": keyspace,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def flush_all(self) -> bool:
        """Delete everything in the cache database."""
        flushed = await self.redis.flush()
        if flushed:
            logger.warning("All cache cleared")
        return flushed
