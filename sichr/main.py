"""FastAPI backend for the SichrPlace cache and query-performance layer."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from sichr.api.performance import router as performance_router
from sichr.cache.service import CacheService
from sichr.config import (
    BACKEND_PORT,
    LOG_LEVEL,
    QUERY_STATS_MAX_TRACKED,
    SLOW_QUERY_THRESHOLD_MS,
    get_cors_origins,
)
from sichr.db.performance import QueryPerformanceTracker
from sichr.db.pool import check_pool_health, close_pool, init_pool
from sichr.redis_client import AsyncRedisClient, RedisConfig
from sichr.services.performance_service import DatabasePerformanceService

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared cache, tracker and services; tear them down on exit."""
    redis = AsyncRedisClient(RedisConfig())
    await redis.connect()

    try:
        await init_pool()
    except Exception as e:
        logger.warning(f"✗ Database unavailable, queries will fail until it is reachable: {e}")

    cache = CacheService(redis)
    tracker = QueryPerformanceTracker(
        slow_query_threshold_ms=SLOW_QUERY_THRESHOLD_MS,
        max_tracked=QUERY_STATS_MAX_TRACKED,
    )

    app.state.redis = redis
    app.state.cache = cache
    app.state.tracker = tracker
    app.state.performance = DatabasePerformanceService(cache, tracker)
    logger.info("✓ SichrPlace backend started")

    try:
        yield
    finally:
        await redis.close()
        await close_pool()
        logger.info("SichrPlace backend stopped")


app = FastAPI(title="SichrPlace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(performance_router)


@app.get("/health")
async def health(request: Request) -> Dict[str, Any]:
    """Redis and database health."""
    redis_health = await request.app.state.redis.health()
    database_health = await check_pool_health()

    healthy = redis_health["status"] == "healthy" and database_health["status"] == "healthy"
    return {
        "status": "healthy" if healthy else "degraded",
        "redis": redis_health,
        "database": database_health,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=BACKEND_PORT)
