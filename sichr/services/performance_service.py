"""Database access with caching and performance tracking.

DatabasePerformanceService wraps every listing query in the same pipeline:

    1. Build the query identifier from the table and the query shape
    2. If caching is enabled, look the result up in the category cache
    3. On a miss run the query, time it and store the result
    4. Record the hit/miss/error observation with the tracker

The cache and the tracker are injected; one instance of each is shared
across the application (see sichr.main).

Usage:
    service = DatabasePerformanceService(cache, tracker)

    result = await service.search_apartments({"max_price": 900, "location": "Berlin"})
    # {"data": [...], "error": None, "cached": False, "execution_time": 12.4}
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sichr.cache.keys import build_query_id
from sichr.cache.service import CacheService
from sichr.db.performance import QueryPerformanceTracker
from sichr.db.query_builders import SelectQuery
from sichr.db_helpers import fetch_all, fetch_one

logger = logging.getLogger(__name__)


ANALYTICS_METRICS: Dict[str, SelectQuery] = {
    "new_apartments": SelectQuery("apartments").columns("id", "created_at"),
    "new_users": SelectQuery("users").columns("id", "created_at", "user_type"),
    "viewing_requests": SelectQuery("viewing_requests").columns("id", "created_at", "status"),
    "messages": SelectQuery("messages").columns("id", "created_at"),
}

ANALYTICS_TIMEFRAMES: Dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

APARTMENT_LIST_COLUMNS = (
    "id", "title", "description", "price", "location",
    "bedrooms", "bathrooms", "area", "amenities",
    "images", "landlord_id", "created_at",
    "available_from", "contact_info",
)

# Page size used when an offset is given without a limit
DEFAULT_PAGE_SIZE = 20


@dataclass
class CacheConfig:
    """How perform_query should cache a query's result."""

    enabled: bool = False
    category: str = "database"
    ttl: Optional[int] = None
    params: Dict[str, Any] = field(default_factory=dict)


class DatabasePerformanceService:
    """Cached, instrumented queries against the listings database."""

    def __init__(self, cache: CacheService, tracker: QueryPerformanceTracker):
        self.cache = cache
        self.tracker = tracker

    # ========================================================================
    # Core pipeline
    # ========================================================================

    async def perform_query(
        self,
        table: str,
        query_shape: Any,
        query_fn: Callable[[], Awaitable[Any]],
        cache_config: Optional[CacheConfig] = None,
    ) -> Dict[str, Any]:
        """
        Run a query through the cache and the performance tracker.

        Args:
            table: Table or entity the query targets
            query_shape: Serializable description of the query
            query_fn: Async callable performing the real query
            cache_config: Caching options (caching disabled by default)

        Returns:
            {"data", "error": None, "cached": True} on a cache hit, or
            {"data", "error": None, "cached": False, "execution_time"} after
            running the query

        Raises:
            Whatever query_fn raises, after the error has been recorded
        """
        config = cache_config or CacheConfig()
        query_id = build_query_id(table, query_shape)

        if config.enabled:
            cached = await self.cache.get(config.category, query_id, config.params)
            if cached is not None:
                self.tracker.record_observation(query_id, 0, True)
                await self.cache.increment_counter("cache_hits", "total")
                return {"data": cached, "error": None, "cached": True}

        start = time.perf_counter()
        try:
            data = await query_fn()
        except Exception as e:
            self.tracker.record_observation(query_id, _elapsed_ms(start), False, e)
            raise

        execution_time = _elapsed_ms(start)
        self.tracker.record_observation(query_id, execution_time, False)
        await self.cache.increment_counter("cache_misses", "total")

        if config.enabled and data is not None:
            await self.cache.set(config.category, query_id, data, config.ttl, config.params)

        return {
            "data": data,
            "error": None,
            "cached": False,
            "execution_time": round(execution_time, 2),
        }

    async def _run(
        self,
        query: SelectQuery,
        cache_config: CacheConfig,
        single: bool = False,
    ) -> Dict[str, Any]:
        sql, params = query.build()
        fetch = fetch_one if single else fetch_all
        return await self.perform_query(
            query.table,
            query.shape(),
            lambda: fetch(sql, *params),
            cache_config,
        )

    # ========================================================================
    # Listing queries
    # ========================================================================

    async def search_apartments(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Search apartments, newest first.

        Supported filters: min_price, max_price, bedrooms (exact),
        bathrooms (minimum), location (substring, case-insensitive),
        amenities (any overlap), available_from (available on or before),
        limit, offset.
        """
        filters = filters or {}
        query = SelectQuery("apartments").columns(*APARTMENT_LIST_COLUMNS)

        if filters.get("min_price"):
            query = query.where("price >= $1", filters["min_price"])
        if filters.get("max_price"):
            query = query.where("price <= $1", filters["max_price"])
        if filters.get("bedrooms"):
            query = query.where("bedrooms = $1", filters["bedrooms"])
        if filters.get("bathrooms"):
            query = query.where("bathrooms >= $1", filters["bathrooms"])
        if filters.get("location"):
            query = query.where("location ILIKE $1", f"%{filters['location']}%")
        if filters.get("amenities"):
            query = query.where("amenities && $1", list(filters["amenities"]))
        if filters.get("available_from"):
            query = query.where("available_from <= $1", filters["available_from"])

        query = query.order_by("created_at DESC")

        limit = filters.get("limit")
        offset = filters.get("offset")
        if offset:
            query = query.offset(offset).limit(limit or DEFAULT_PAGE_SIZE)
        elif limit:
            query = query.limit(limit)

        return await self._run(
            query,
            CacheConfig(enabled=True, category="apartments", ttl=300, params=filters),
        )

    async def get_apartment_by_id(self, apartment_id: Any) -> Dict[str, Any]:
        query = SelectQuery("apartments").where("id = $1", apartment_id)
        return await self._run(
            query,
            CacheConfig(enabled=True, category="apartments", ttl=600, params={"id": apartment_id}),
            single=True,
        )

    async def get_user_by_id(self, user_id: Any) -> Dict[str, Any]:
        query = (SelectQuery("users")
            .columns("id", "email", "name", "phone", "user_type", "preferences", "created_at")
            .where("id = $1", user_id))
        return await self._run(
            query,
            CacheConfig(enabled=True, category="users", ttl=300, params={"user_id": user_id}),
            single=True,
        )

    async def get_viewing_requests(self, user_id: Any, user_type: str) -> Dict[str, Any]:
        """Viewing requests received by a landlord, or sent by anyone else."""
        column = "landlord_id" if user_type == "landlord" else "requester_id"
        query = (SelectQuery("viewing_requests")
            .columns(
                "id", "apartment_id", "requester_id", "landlord_id",
                "preferred_date", "preferred_time", "message", "status",
                "created_at", "updated_at",
            )
            .where(f"{column} = $1", user_id)
            .order_by("created_at DESC"))
        return await self._run(
            query,
            CacheConfig(
                enabled=True,
                category="viewing_requests",
                ttl=60,
                params={"user_id": user_id, "user_type": user_type},
            ),
        )

    async def get_conversations(self, user_id: Any, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        query = (SelectQuery("conversations")
            .columns(
                "id", "apartment_id", "requester_id", "landlord_id",
                "last_message", "last_message_at", "created_at",
            )
            .where("requester_id = $1 OR landlord_id = $1", user_id)
            .order_by("last_message_at DESC")
            .limit(limit)
            .offset((page - 1) * limit))
        return await self._run(
            query,
            CacheConfig(
                enabled=True,
                category="conversations",
                ttl=30,
                params={"user_id": user_id, "page": page, "limit": limit},
            ),
        )

    async def get_messages(self, conversation_id: Any, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        query = (SelectQuery("messages")
            .columns(
                "id", "conversation_id", "sender_id", "content",
                "message_type", "read_at", "created_at",
            )
            .where("conversation_id = $1", conversation_id)
            .order_by("created_at ASC")
            .limit(limit)
            .offset((page - 1) * limit))
        return await self._run(
            query,
            CacheConfig(
                enabled=True,
                category="messages",
                ttl=30,
                params={"conversation_id": conversation_id, "page": page, "limit": limit},
            ),
        )

    async def get_analytics_data(self, metric: str, timeframe: str = "24h") -> Dict[str, Any]:
        """
        Rows created within the timeframe for an analytics metric.

        Unknown timeframes use the 24h window.

        Raises:
            ValueError: If the metric is unknown
        """
        base = ANALYTICS_METRICS.get(metric)
        if base is None:
            raise ValueError(f"Unknown metric: {metric}")

        window = ANALYTICS_TIMEFRAMES.get(timeframe, ANALYTICS_TIMEFRAMES["24h"])
        query = base.where("created_at >= NOW() - $1::interval", window)

        return await self._run(
            query,
            CacheConfig(
                enabled=True,
                category="analytics",
                ttl=300,
                params={"metric": metric, "timeframe": timeframe},
            ),
        )

    async def get_popular_apartments(self, limit: int = 10) -> Dict[str, Any]:
        """Most requested apartments, ranked by the get_popular_apartments SQL function."""
        sql = "SELECT * FROM get_popular_apartments($1)"
        return await self.perform_query(
            "popular_apartments",
            {"sql": sql, "params": [limit]},
            lambda: fetch_all(sql, limit),
            CacheConfig(enabled=True, category="popular_apartments", ttl=600, params={"limit": limit}),
        )

    async def batch_get_apartments(self, apartment_ids: List[Any]) -> List[Dict[str, Any]]:
        """
        Fetch many apartments, serving what it can from the cache.

        Cached apartments come first, followed by the freshly fetched ones,
        which are cached for 10 minutes.
        """
        cached: List[Dict[str, Any]] = []
        uncached: List[Any] = []

        for apartment_id in apartment_ids:
            apartment = await self.cache.get("apartments", apartment_id)
            if apartment is not None:
                cached.append(apartment)
            else:
                uncached.append(apartment_id)

        if not uncached:
            return cached

        query = SelectQuery("apartments").where("id = ANY($1)", uncached)
        sql, params = query.build()
        fresh = await self.tracker.track(
            build_query_id("apartments", query.shape()),
            lambda: fetch_all(sql, *params),
        )

        for apartment in fresh:
            await self.cache.set("apartments", apartment["id"], apartment, 600)

        logger.debug(f"Batch apartments: {len(cached)} cached, {len(fresh)} fetched")
        return cached + fresh

    # ========================================================================
    # Maintenance
    # ========================================================================

    async def invalidate_cache(self, category: str, identifier: Any = None) -> bool:
        """Delete one cached entry, or the whole category when no identifier is given."""
        if identifier is not None:
            return await self.cache.delete(category, identifier)
        return await self.cache.clear_category(category)

    async def optimize_queries(self) -> List[Dict[str, Any]]:
        """
        Build optimisation recommendations.

        Returns:
            List of recommendations: "slow_queries" (up to 5 slowest queries
            above the threshold) and "cache_performance" (Redis stats), each
            only when there is something to report
        """
        recommendations: List[Dict[str, Any]] = []

        slow = self.tracker.slow_queries_report(limit=5)
        if slow:
            recommendations.append({"type": "slow_queries", "count": len(slow), "queries": slow})

        cache_stats = await self.cache.get_cache_stats()
        if cache_stats:
            recommendations.append({"type": "cache_performance", "stats": cache_stats})

        return recommendations

    def get_performance_stats(self) -> Dict[str, Any]:
        return self.tracker.get_performance_stats()

    def get_query_stats(self, query_id: str) -> Optional[Dict[str, Any]]:
        """Statistics for one query identifier, or None if it was never observed."""
        stats = self.tracker.get(query_id)
        if stats is None:
            return None
        return {"query_id": query_id, **asdict(stats), "cache_hit_rate": stats.cache_hit_rate}

    def reset_performance_stats(self) -> int:
        """
        Forget all query statistics.

        Returns:
            Number of query identifiers that were being tracked
        """
        tracked = len(self.tracker)
        self.tracker.reset()
        logger.info(f"Query statistics reset ({tracked} queries dropped)")
        return tracked


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
