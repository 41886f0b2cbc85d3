"""Async query helpers on top of the asyncpg pool.

Rows come back as plain dicts so they can be cached as JSON without further
conversion.

Usage:
    apartment = await fetch_one("SELECT * FROM apartments WHERE id = $1", apartment_id)
    rows = await fetch_all("SELECT * FROM messages WHERE conversation_id = $1", conversation_id)

Notes:
    - Placeholders are asyncpg style ($1, $2, ...)
    - Errors are logged together with the query and re-raised
"""

import logging
from typing import Any, Dict, List, Optional

from sichr.db.pool import get_pool

logger = logging.getLogger(__name__)


async def fetch_one(query: str, *args) -> Optional[Dict[str, Any]]:
    """
    Fetch a single row.

    Returns:
        Dict keyed by column name, or None if the query produced no rows
    """
    pool = get_pool()

    try:
        async with pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
            return dict(row) if row else None

    except Exception as e:
        logger.error(f"Error in fetch_one: {e}", exc_info=True)
        logger.error(f"Query: {query}")
        raise


async def fetch_all(query: str, *args) -> List[Dict[str, Any]]:
    """
    Fetch all rows.

    Returns:
        List of dicts keyed by column name (empty if no rows)
    """
    pool = get_pool()

    try:
        async with pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
            return [dict(row) for row in rows]

    except Exception as e:
        logger.error(f"Error in fetch_all: {e}", exc_info=True)
        logger.error(f"Query: {query}")
        raise
