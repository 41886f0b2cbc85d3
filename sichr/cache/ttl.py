"""Default expiration per cache category."""

from typing import Dict

# Fallback for categories missing from the table (5 minutes)
DEFAULT_TTL = 5 * 60

# Counters expire one day after their most recent increment
COUNTER_TTL = 24 * 60 * 60

CATEGORY_TTLS: Dict[str, int] = {
    "apartments": 15 * 60,
    "users": 10 * 60,
    "search": 5 * 60,
    "geocoding": 60 * 60,
    "places": 30 * 60,
    "analytics": 60,
    "session": 24 * 60 * 60,
    "static": 7 * 24 * 60 * 60,
}


def default_ttl(category: str) -> int:
    """Return the default TTL in seconds for a category."""
    return CATEGORY_TTLS.get(category, DEFAULT_TTL)
