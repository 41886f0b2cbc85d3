"""Serialization utilities for cache entries.

Cached values are stored as a JSON envelope carrying the payload together
with a little metadata about when and under which name it was written:

    {"data": ..., "timestamp": 1735689600000, "category": "apartments", "identifier": "42"}

Special Type Handling:
    - datetime/date/time: Converted to ISO format strings
    - Decimal: Converted to float
    - UUID: Converted to string
    - bytes: Base64 encoded
    - set: Converted to list

Usage:
    from sichr.cache.serializer import wrap_envelope, unwrap_envelope

    raw = wrap_envelope({"title": "2BR Kreuzberg"}, "apartments", "42")
    data = unwrap_envelope(raw)
"""

import base64
import json
import logging
import time as _time
from datetime import datetime, date, time
from decimal import Decimal
from typing import Any, Union
from uuid import UUID

logger = logging.getLogger(__name__)


class SerializationError(ValueError):
    """Raised when a value cannot be encoded or a stored payload cannot be decoded."""


# ============================================================================
# JSON Serialization
# ============================================================================


def _json_default(obj: Any) -> Any:
    """
    Custom JSON encoder for special types.

    Raises:
        TypeError: If object type is not supported
    """
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()

    if isinstance(obj, Decimal):
        return float(obj)

    if isinstance(obj, UUID):
        return str(obj)

    if isinstance(obj, bytes):
        return base64.b64encode(obj).decode("utf-8")

    if isinstance(obj, set):
        return list(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def serialize_json(data: Any) -> str:
    """
    Serialize data to a compact JSON string.

    Raises:
        SerializationError: If the value contains unsupported types
    """
    try:
        return json.dumps(data, default=_json_default, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise SerializationError(f"JSON serialization failed: {e}") from e


def deserialize_json(data: Union[str, bytes]) -> Any:
    """
    Deserialize a JSON string or bytes.

    Raises:
        SerializationError: If the payload is not valid JSON
    """
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"JSON deserialization failed: {e}") from e


# ============================================================================
# Cache envelope
# ============================================================================


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(_time.time() * 1000)


def wrap_envelope(data: Any, category: str, identifier: Any) -> str:
    """
    Wrap a value in the cache envelope and serialize it.

    Args:
        data: Value to cache (anything JSON-serializable, plus the special
              types listed in the module docstring)
        category: Cache category the value is written under
        identifier: Identifier within the category

    Returns:
        JSON string ready to store
    """
    return serialize_json({
        "data": data,
        "timestamp": now_ms(),
        "category": category,
        "identifier": identifier,
    })


def unwrap_envelope(raw: Union[str, bytes]) -> Any:
    """
    Deserialize a stored envelope and return its payload.

    Raises:
        SerializationError: If the payload is not JSON or not an envelope
    """
    envelope = deserialize_json(raw)

    if not isinstance(envelope, dict) or "data" not in envelope:
        raise SerializationError("Stored value is not a cache envelope")

    return envelope["data"]
