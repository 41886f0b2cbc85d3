"""Chart-ready time buckets for analytics metrics.

process_analytics_data groups rows by their created_at timestamp into
consecutive buckets ending at `now`:

    1h   12 buckets of 5 minutes, labelled "HH:MM"
    24h  24 buckets of 1 hour, labelled "HH:00"
    7d   7 buckets of 1 day, labelled "Mon D"
    30d  30 buckets of 1 day, labelled "Mon D"

Unknown timeframes are bucketed like 24h. Labels are rendered in UTC.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


def _hour_minute(moment: datetime) -> str:
    return moment.strftime("%H:%M")


def _hour(moment: datetime) -> str:
    return moment.strftime("%H:00")


def _month_day(moment: datetime) -> str:
    return f"{moment:%b} {moment.day}"


TIMEFRAME_BUCKETS: Dict[str, Tuple[int, timedelta, Callable[[datetime], str]]] = {
    "1h": (12, timedelta(minutes=5), _hour_minute),
    "24h": (24, timedelta(hours=1), _hour),
    "7d": (7, timedelta(days=1), _month_day),
    "30d": (30, timedelta(days=1), _month_day),
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Convert a created_at value to an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC) and ISO 8601 strings,
    including a trailing "Z". Returns None for anything else.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None

    if not isinstance(value, datetime):
        return None

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def process_analytics_data(
    rows: Optional[Iterable[Dict[str, Any]]],
    metric: str,
    timeframe: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Summarize metric rows for chart display.

    Args:
        rows: Rows carrying a created_at datetime or ISO string
        metric: Metric name, used in the summary
        timeframe: One of 1h, 24h, 7d, 30d
        now: End of the last bucket (defaults to the current UTC time)

    Returns:
        {"total": int, "chart_data": [{"label", "value"}], "summary": str}
    """
    rows = list(rows or [])
    if not rows:
        return {
            "total": 0,
            "chart_data": [],
            "summary": f"No {metric} data available for {timeframe}",
        }

    intervals, step, label = TIMEFRAME_BUCKETS.get(timeframe, TIMEFRAME_BUCKETS["24h"])
    now = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)

    timestamps = [parse_timestamp(row.get("created_at")) for row in rows]
    skipped = sum(1 for ts in timestamps if ts is None)
    if skipped:
        logger.debug(f"Skipped {skipped} {metric} rows without a usable created_at")
    timestamps = [ts for ts in timestamps if ts is not None]

    chart_data: List[Dict[str, Any]] = []
    for i in range(intervals - 1, -1, -1):
        bucket_start = now - step * i
        bucket_end = bucket_start + step
        count = sum(1 for ts in timestamps if bucket_start <= ts < bucket_end)
        chart_data.append({"label": label(bucket_start), "value": count})

    total = len(rows)
    return {
        "total": total,
        "chart_data": chart_data,
        "summary": f"{total} {metric.replace('_', ' ')} in the last {timeframe}",
    }
