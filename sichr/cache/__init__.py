"""Redis cache layer for the SichrPlace backend.

Key Modules:
    - keys: Cache key and query identifier builders
    - ttl: Default expiration per category
    - serializer: JSON envelope for cached values
    - service: CacheService, the category cache, counters and leaderboards
    - middleware: @cache_response decorator for FastAPI endpoints

Example:
    from sichr.cache import CacheService, build_key
    from sichr.redis_client import AsyncRedisClient

    redis = AsyncRedisClient()
    await redis.connect()
    cache = CacheService(redis)

    await cache.set("apartments", "42", apartment)
"""

from .keys import (
    build_key,
    build_query_id,
    category_pattern,
)
from .ttl import default_ttl
from .service import CacheService
from .middleware import cache_response

__all__ = [
    "build_key",
    "build_query_id",
    "category_pattern",
    "default_ttl",
    "CacheService",
    "cache_response",
]
