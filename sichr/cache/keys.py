"""Cache key builders for the SichrPlace cache layer.

Every key written by the cache service goes through this module so that the
same logical entry always maps to exactly one Redis key.

Key Naming Convention:
    - Use colons (:) to separate namespaces
    - Format: {prefix}:{category}:{identifier}[:{params_hash}]
    - Examples:
        - sichr:apartments:42
        - sichr:search:apartments:3f2a9c1d
        - sichr:counter:cache_hits:5d41402a
        - sichr:sorted:top_landlords

Parameter bags are serialized canonically (keys sorted) before hashing, so
{"a": 1, "b": 2} and {"b": 2, "a": 1} produce the same key.

Usage:
    from sichr.cache.keys import build_key, category_pattern

    key = build_key("apartments", "42")
    # Returns: "sichr:apartments:42"

    key = build_key("search", "apartments", {"city": "Berlin", "maxPrice": 900})
    # Returns: "sichr:search:apartments:<8 hex chars>"

    # Invalidate a whole category
    await redis.delete_pattern(category_pattern("apartments"))
"""

import hashlib
import json
import logging
import re
from typing import Any, Dict, Optional

from sichr.config import CACHE_KEY_PREFIX

logger = logging.getLogger(__name__)

KEY_PREFIX = CACHE_KEY_PREFIX

# Length of the params hash suffix on cache keys
PARAMS_HASH_LENGTH = 8

# Reserved namespaces
COUNTER_NAMESPACE = "counter"
SORTED_SET_NAMESPACE = "sorted"

_NON_ALNUM = re.compile(r"[^a-z0-9]")


# ============================================================================
# Canonical serialization
# ============================================================================


def _string_keys(value: Any) -> Any:
    """Recursively convert mapping keys to str so mixed key types can be sorted."""
    if isinstance(value, dict):
        return {str(key): _string_keys(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_string_keys(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    """
    Serialize a value to JSON with a stable key order.

    Nested mappings are sorted too, mapping keys are compared as strings, and
    values JSON cannot represent (datetimes, UUIDs, Decimals) are rendered
    with str().

    Example:
        >>> canonical_json({"b": 2, "a": {"d": 1, "c": 0}})
        '{"a":{"c":0,"d":1},"b":2}'
    """
    return json.dumps(_string_keys(value), sort_keys=True, separators=(",", ":"), default=str)


def _md5_hex(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


# ============================================================================
# Category keys
# ============================================================================


def build_key(
    category: str,
    identifier: Any,
    params: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Build the cache key for a (category, identifier, params) combination.

    Args:
        category: Cache category (e.g., "apartments", "search", "geocoding")
        identifier: Entity identifier within the category
        params: Optional parameter bag; hashed into an 8-char suffix

    Returns:
        Cache key in format:
            - "sichr:{category}:{identifier}" (no params)
            - "sichr:{category}:{identifier}:{hash}" (with params)

    Examples:
        >>> build_key("apartments", "42")
        'sichr:apartments:42'

        >>> build_key("search", "apartments", {"b": 2, "a": 1}) == \\
        ...     build_key("search", "apartments", {"a": 1, "b": 2})
        True
    """
    base_key = f"{KEY_PREFIX}:{category}:{identifier}"

    if not params:
        return base_key

    params_hash = _md5_hex(canonical_json(params))[:PARAMS_HASH_LENGTH]
    return f"{base_key}:{params_hash}"


def category_pattern(category: str) -> str:
    """
    Get pattern to match every key of a category.

    Example:
        >>> category_pattern("apartments")
        'sichr:apartments:*'
    """
    return f"{KEY_PREFIX}:{category}:*"


def counter_key(category: str, identifier: Any) -> str:
    """
    Build the key of a counter.

    Counters live in their own namespace with the counted identifier folded
    into the params hash.

    Example:
        >>> counter_key("cache_hits", "total").startswith("sichr:counter:cache_hits:")
        True
    """
    return build_key(COUNTER_NAMESPACE, category, {"id": identifier})


def sorted_set_key(set_name: str) -> str:
    """
    Build the key of a ranking sorted set.

    Example:
        >>> sorted_set_key("top_landlords")
        'sichr:sorted:top_landlords'
    """
    return f"{KEY_PREFIX}:{SORTED_SET_NAMESPACE}:{set_name}"


# ============================================================================
# Identifier shapes used by the convenience wrappers
# ============================================================================


def normalize_address(address: str) -> str:
    """
    Reduce an address to lower-case alphanumerics.

    Example:
        >>> normalize_address("Hauptstraße 5, 10115 Berlin")
        'hauptstrae510115berlin'
    """
    return _NON_ALNUM.sub("", address.lower())


def location_key(lat: float, lng: float, place_type: str, radius: int) -> str:
    """
    Build the identifier for a nearby-places lookup.

    Example:
        >>> location_key(52.52, 13.405, "school", 1000)
        '52.52_13.405_school_1000'
    """
    return f"{lat}_{lng}_{place_type}_{radius}"


def analytics_key(metric: str, timeframe: str) -> str:
    """
    Build the identifier for an analytics snapshot.

    Example:
        >>> analytics_key("new_users", "24h")
        'new_users_24h'
    """
    return f"{metric}_{timeframe}"


# ============================================================================
# Query identifiers
# ============================================================================


def build_query_id(table: str, query_shape: Any) -> str:
    """
    Build the identifier used to aggregate statistics for a logical query.

    Args:
        table: Table or entity name the query targets
        query_shape: Anything describing the query (SQL + params, a filter
                     dict, ...). Serialized canonically before hashing.

    Returns:
        32-character hex digest of "{table}:{canonical query shape}"

    Example:
        >>> build_query_id("apartments", {"sql": "SELECT 1", "params": []}) == \\
        ...     build_query_id("apartments", {"params": [], "sql": "SELECT 1"})
        True
    """
    return _md5_hex(f"{table}:{canonical_json(query_shape)}")
