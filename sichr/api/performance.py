"""Performance monitoring and cache management API endpoints."""

import logging
import os
import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from sichr.cache.middleware import cache_response
from sichr.cache.service import CacheService
from sichr.dependencies import get_cache_service, get_performance_service
from sichr.services.performance_service import ANALYTICS_METRICS, DatabasePerformanceService
from sichr.utils.analytics import process_analytics_data

if sys.platform != "win32":
    import resource
else:
    resource = None

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/performance", tags=["performance"])

_STARTED_AT = time.monotonic()


# ============================================================================
# Request Models
# ============================================================================


class ClearCacheRequest(BaseModel):
    """Request body for clearing one cache category."""

    category: Optional[str] = Field(default=None, description="Cache category to clear (e.g., 'apartments')")


class LeaderboardEntry(BaseModel):
    """Request body for adding a score to a leaderboard."""

    member: Optional[str] = Field(default=None, description="Ranked member (e.g., an apartment id)")
    score: Optional[float] = Field(default=None, description="Score of the member")


# ============================================================================
# Helpers
# ============================================================================


def _hit_rate(hits: int, total: int) -> str:
    if total <= 0:
        return "0%"
    return f"{hits / total * 100:.2f}%"


def _process_metrics() -> Dict[str, Any]:
    cpu = os.times()
    metrics: Dict[str, Any] = {
        "uptime": round(time.monotonic() - _STARTED_AT, 2),
        "pid": os.getpid(),
        "python_version": platform.python_version(),
        "platform": sys.platform,
        "cpu": {"user": cpu.user, "system": cpu.system},
    }

    if resource is not None:
        # ru_maxrss is kilobytes on Linux and bytes on macOS
        metrics["max_rss"] = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss

    return metrics


# ============================================================================
# Cache
# ============================================================================


@router.get("/cache/stats")
async def get_cache_stats(cache: CacheService = Depends(get_cache_service)) -> Dict[str, Any]:
    """
    Get Redis memory/keyspace statistics and the cache hit rate.

    Raises:
        HTTPException: 503 if the cache is unavailable
    """
    try:
        stats = await cache.get_cache_stats()
        if stats is None:
            raise HTTPException(status_code=503, detail="Cache service unavailable")

        hits = await cache.get_counter("cache_hits", "total")
        misses = await cache.get_counter("cache_misses", "total")
        total = hits + misses

        return {
            "success": True,
            "data": {
                **stats,
                "performance": {
                    "hits": hits,
                    "misses": misses,
                    "total_requests": total,
                    "hit_rate": _hit_rate(hits, total),
                },
            },
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting cache stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get cache statistics")


@router.post("/cache/clear")
async def clear_cache(
    body: ClearCacheRequest,
    cache: CacheService = Depends(get_cache_service),
) -> Dict[str, Any]:
    """
    Clear every cache entry of a category.

    Raises:
        HTTPException: 400 if no category is given
    """
    if not body.category:
        raise HTTPException(status_code=400, detail="Category is required")

    try:
        cleared = await cache.clear_category(body.category)
    except Exception as e:
        logger.error(f"Error clearing cache: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to clear cache")

    return {
        "success": cleared,
        "message": f"Cache cleared for category: {body.category}" if cleared else "Failed to clear cache",
    }


@router.post("/cache/flush")
async def flush_cache(cache: CacheService = Depends(get_cache_service)) -> Dict[str, Any]:
    """Flush the whole cache database."""
    try:
        flushed = await cache.flush_all()
    except Exception as e:
        logger.error(f"Error flushing cache: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to flush cache")

    return {
        "success": flushed,
        "message": "All cache flushed" if flushed else "Failed to flush cache",
    }


@router.get("/test/cache")
async def test_cache(cache: CacheService = Depends(get_cache_service)) -> Dict[str, Any]:
    """Exercise set/get and counter operations against the live cache."""
    try:
        test_data = {
            "message": "Cache test data",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "random": os.urandom(4).hex(),
        }

        set_result = await cache.set("test", "performance", test_data, 60)
        retrieved = await cache.get("test", "performance")

        counter_before = await cache.get_counter("test", "counter")
        await cache.increment_counter("test", "counter", 5)
        counter_after = await cache.get_counter("test", "counter")

        return {
            "success": True,
            "tests": {
                "set_operation": set_result,
                "get_operation": retrieved is not None,
                "data_integrity": retrieved == test_data,
                "counter_before": counter_before,
                "counter_after": counter_after,
                "counter_increment": counter_after - counter_before == 5,
            },
            "retrieved_data": retrieved,
        }

    except Exception as e:
        logger.error(f"Error testing cache: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Cache test failed")


# ============================================================================
# Database & system
# ============================================================================


@router.get("/database/stats")
async def get_database_stats(
    service: DatabasePerformanceService = Depends(get_performance_service),
) -> Dict[str, Any]:
    """Get query statistics and optimisation recommendations."""
    try:
        return {
            "success": True,
            "data": {
                "performance": service.get_performance_stats(),
                "recommendations": await service.optimize_queries(),
            },
        }
    except Exception as e:
        logger.error(f"Error getting database stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get database statistics")


@router.post("/database/stats/reset")
async def reset_database_stats(
    service: DatabasePerformanceService = Depends(get_performance_service),
) -> Dict[str, Any]:
    """Forget all collected query statistics."""
    tracked = service.reset_performance_stats()
    return {"success": True, "message": f"Reset statistics for {tracked} queries"}


@router.get("/database/stats/{query_id}")
async def get_query_stats(
    query_id: str,
    service: DatabasePerformanceService = Depends(get_performance_service),
) -> Dict[str, Any]:
    """
    Statistics for a single query identifier.

    Raises:
        HTTPException: 404 if the query has not been observed
    """
    stats = service.get_query_stats(query_id)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"No statistics for query: {query_id}")
    return {"success": True, "data": stats}


@router.get("/system/overview")
async def get_system_overview(
    service: DatabasePerformanceService = Depends(get_performance_service),
) -> Dict[str, Any]:
    """Process metrics together with cache and database statistics."""
    try:
        return {
            "success": True,
            "data": {
                "system": _process_metrics(),
                "cache": await service.cache.get_cache_stats(),
                "database": service.get_performance_stats(),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
    except Exception as e:
        logger.error(f"Error getting system overview: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get system overview")


# ============================================================================
# Analytics
# ============================================================================


@router.get("/analytics/popular-apartments")
@cache_response("analytics", get_ttl=lambda request: 600)
async def get_popular_apartments(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    service: DatabasePerformanceService = Depends(get_performance_service),
) -> JSONResponse:
    """Most requested apartments (response cached for 10 minutes)."""
    try:
        result = await service.get_popular_apartments(limit)
    except Exception as e:
        logger.error(f"Error getting popular apartments: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get popular apartments")

    return JSONResponse(content=jsonable_encoder(
        {"success": True, "data": result["data"], "cached": result["cached"]}
    ))


@router.get("/analytics/{metric}")
@cache_response("analytics", get_ttl=lambda request: 300)
async def get_analytics(
    metric: str,
    request: Request,
    timeframe: str = Query(default="24h", description="1h, 24h, 7d or 30d"),
    service: DatabasePerformanceService = Depends(get_performance_service),
) -> JSONResponse:
    """
    Chart-ready analytics for a metric (response cached for 5 minutes).

    Raises:
        HTTPException: 400 for an unknown metric
    """
    if metric not in ANALYTICS_METRICS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid metric. Valid metrics: {', '.join(ANALYTICS_METRICS)}",
        )

    try:
        result = await service.get_analytics_data(metric, timeframe)
    except Exception as e:
        logger.error(f"Error getting {metric} analytics: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get analytics data")

    return JSONResponse(content=jsonable_encoder({
        "success": True,
        "data": process_analytics_data(result["data"], metric, timeframe),
        "cached": result["cached"],
        "execution_time": result.get("execution_time"),
    }))


# ============================================================================
# Leaderboards
# ============================================================================


@router.get("/leaderboard/{category}")
async def get_leaderboard(
    category: str,
    limit: int = Query(default=10, ge=1, le=100),
    cache: CacheService = Depends(get_cache_service),
) -> Dict[str, Any]:
    """Top members of a leaderboard, highest score first."""
    try:
        leaderboard = await cache.get_top_from_sorted_set(category, limit)
    except Exception as e:
        logger.error(f"Error getting leaderboard: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get leaderboard")

    return {"success": True, "data": leaderboard, "category": category, "limit": limit}


@router.post("/leaderboard/{category}")
async def add_to_leaderboard(
    category: str,
    entry: LeaderboardEntry,
    cache: CacheService = Depends(get_cache_service),
) -> Dict[str, Any]:
    """
    Add or update a member's score.

    Raises:
        HTTPException: 400 if member or score is missing
    """
    if not entry.member or entry.score is None:
        raise HTTPException(status_code=400, detail="Member and score are required")

    try:
        added = await cache.add_to_sorted_set(category, entry.member, entry.score)
    except Exception as e:
        logger.error(f"Error adding to leaderboard: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to add to leaderboard")

    return {
        "success": added,
        "message": "Score added to leaderboard" if added else "Failed to add score",
    }
