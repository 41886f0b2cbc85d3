"""FastAPI dependency injection utilities.

The cache service and the database performance service are built once in the
application lifespan (see sichr.main) and kept on app.state; these
dependencies hand them to route handlers.

Example:
    @router.get("/api/performance/cache/stats")
    async def cache_stats(cache: CacheService = Depends(get_cache_service)):
        return await cache.get_cache_stats()
"""

import logging

from fastapi import HTTPException, Request, status

from sichr.cache.service import CacheService
from sichr.services.performance_service import DatabasePerformanceService

logger = logging.getLogger(__name__)


def get_cache_service(request: Request) -> CacheService:
    """
    FastAPI dependency returning the shared CacheService.

    Raises:
        HTTPException: 503 if the application has not finished starting up
    """
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        logger.error("Cache service requested before startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cache service not initialized",
        )
    return cache


def get_performance_service(request: Request) -> DatabasePerformanceService:
    """
    FastAPI dependency returning the shared DatabasePerformanceService.

    Raises:
        HTTPException: 503 if the application has not finished starting up
    """
    service = getattr(request.app.state, "performance", None)
    if service is None:
        logger.error("Performance service requested before startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Performance service not initialized",
        )
    return service
