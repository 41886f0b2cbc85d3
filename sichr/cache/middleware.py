"""Response caching for idempotent FastAPI endpoints.

The @cache_response decorator serves repeated GET requests straight from the
category cache and stores fresh successful responses on the way out.

Features:
    - Cache identifier is "{METHOD}:{path}"; query parameters are the params
      bag, so ?page=2&limit=10 and ?limit=10&page=2 share an entry
    - Only JSONResponse objects with status 200 are cached, so the stored
      body and status are exactly what the client received
    - Optional per-request TTL selector, else the category default
    - Fails open: when Redis is unavailable the endpoint runs normally

Usage:
    from fastapi import Request
    from fastapi.encoders import jsonable_encoder
    from fastapi.responses import JSONResponse
    from sichr.cache.middleware import cache_response

    @router.get("/analytics/{metric}")
    @cache_response("analytics", get_ttl=lambda request: 300)
    async def get_analytics(metric: str, request: Request):
        return JSONResponse(content=jsonable_encoder(await build_analytics(metric)))

Notes:
    - The endpoint must accept a `request: Request` parameter
    - The CacheService is looked up on request.app.state.cache
    - Plain return values are passed through uncached: FastAPI applies
      response_model filtering, the route's status_code and any injected
      Response after the endpoint returns, so their final form is not
      visible here
    - Only apply to side-effect-free routes; nothing stops you from
      decorating a POST, but you should not
"""

import functools
import json
import logging
from typing import Any, Callable, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


def _find_request(args: tuple, kwargs: dict) -> Optional[Request]:
    request = kwargs.get("request")
    if isinstance(request, Request):
        return request
    for value in list(args) + list(kwargs.values()):
        if isinstance(value, Request):
            return value
    return None


def _cacheable_body(result: Any) -> Tuple[bool, Any]:
    """
    Extract the JSON body of an endpoint result if it should be cached.

    Returns:
        (cacheable, body)
    """
    if not isinstance(result, JSONResponse) or result.status_code != 200:
        return False, None

    return True, json.loads(result.body)


def cache_response(
    category: str,
    get_ttl: Optional[Callable[[Request], Optional[int]]] = None,
):
    """
    Decorator caching an endpoint's JSON response in the category cache.

    Args:
        category: Cache category for the stored responses
        get_ttl: Optional function of the request returning the TTL in
                 seconds; None falls back to the category default

    Returns:
        Decorator for async FastAPI endpoint functions
    """
    def decorator(func: Callable) -> Callable:

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            request = _find_request(args, kwargs)
            cache = getattr(request.app.state, "cache", None) if request is not None else None

            if cache is None or not await cache.ensure_connected():
                return await func(*args, **kwargs)

            identifier = f"{request.method}:{request.url.path}"
            params = dict(request.query_params)

            cached = await cache.get(category, identifier, params)
            if cached is not None:
                logger.debug(f"Cache hit for {request.url}")
                return JSONResponse(content=cached)

            result = await func(*args, **kwargs)

            try:
                cacheable, body = _cacheable_body(result)
            except ValueError as e:
                logger.warning(f"Response of {func.__name__} is not cacheable: {e}")
                return result

            if cacheable:
                ttl = get_ttl(request) if get_ttl is not None else None
                await cache.set(category, identifier, body, ttl, params)
            elif not isinstance(result, JSONResponse):
                logger.debug(f"{func.__name__} returned {type(result).__name__}, response not cached")

            return result

        return wrapper

    return decorator
