"""In-process query performance statistics.

QueryPerformanceTracker aggregates latency, cache-hit and error counts per
query identifier (see sichr.cache.keys.build_query_id). Statistics live in
process memory only and are lost on restart.

Accumulation rule:
    - Every observation increments count
    - A cache hit increments cache_hits; total_time and avg_time are untouched
    - A miss adds elapsed_ms to total_time and sets avg_time = total_time / count
    - An error increments errors, whether the observation was a hit or a miss

    So (100 ms miss, 200 ms miss, hit) gives count=3, cache_hits=1, avg_time=150.

Usage:
    tracker = QueryPerformanceTracker(slow_query_threshold_ms=1000)

    rows = await tracker.track(query_id, lambda: fetch_all(sql, *params))
    tracker.record_observation(query_id, 0, was_cache_hit=True)

    stats = tracker.get_performance_stats()

Notes:
    - Recording mutates state synchronously, with no await between reading and
      writing a record, so concurrent tasks on one event loop never interleave
      a read-modify-write
    - The map is unbounded unless max_tracked is set, in which case the least
      recently observed query is evicted
"""

import logging
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class QueryStats:
    """Running statistics for one query identifier."""

    count: int = 0
    total_time: float = 0.0
    avg_time: float = 0.0
    cache_hits: int = 0
    errors: int = 0

    @property
    def cache_hit_rate(self) -> str:
        if self.count == 0:
            return "0%"
        return f"{self.cache_hits / self.count * 100:.2f}%"


class QueryPerformanceTracker:
    """
    Aggregates per-query latency, cache-hit and error statistics.

    Args:
        slow_query_threshold_ms: Average (and single-miss) time above which a
                                 query counts as slow
        max_tracked: Maximum number of distinct query identifiers to keep;
                     None or 0 means unbounded
    """

    def __init__(
        self,
        slow_query_threshold_ms: float = 1000.0,
        max_tracked: Optional[int] = None,
    ):
        self.slow_query_threshold_ms = slow_query_threshold_ms
        self.max_tracked = max_tracked or None
        self._stats: "OrderedDict[str, QueryStats]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._stats)

    def get(self, query_id: str) -> Optional[QueryStats]:
        """Return a copy of the statistics for one query, or None."""
        stats = self._stats.get(query_id)
        return QueryStats(**asdict(stats)) if stats is not None else None

    # ========================================================================
    # Recording
    # ========================================================================

    def record_observation(
        self,
        query_id: str,
        elapsed_ms: float,
        was_cache_hit: bool,
        error: Optional[BaseException] = None,
    ) -> None:
        """
        Fold one observation into the statistics for query_id.

        Never raises: a failure while recording is logged and dropped so it
        cannot change the outcome of the call being measured.
        """
        try:
            self._record(query_id, elapsed_ms, was_cache_hit, error)
        except Exception as e:
            logger.error(f"Failed to record query stats for {query_id}: {e}", exc_info=True)

    def _record(
        self,
        query_id: str,
        elapsed_ms: float,
        was_cache_hit: bool,
        error: Optional[BaseException],
    ) -> None:
        stats = self._stats.get(query_id)
        if stats is None:
            stats = QueryStats()
            self._stats[query_id] = stats
            self._evict()
        else:
            self._stats.move_to_end(query_id)

        stats.count += 1

        if was_cache_hit:
            stats.cache_hits += 1
        else:
            stats.total_time += elapsed_ms
            stats.avg_time = stats.total_time / stats.count

        if error is not None:
            stats.errors += 1

        if not was_cache_hit and elapsed_ms > self.slow_query_threshold_ms:
            logger.warning(f"Slow query detected: {query_id} ({elapsed_ms:.0f}ms)")

    def _evict(self) -> None:
        if self.max_tracked is None:
            return
        while len(self._stats) > self.max_tracked:
            evicted, _ = self._stats.popitem(last=False)
            logger.debug(f"Evicted query stats for {evicted}")

    async def track(self, query_id: str, query_fn: Callable[[], Awaitable[T]]) -> T:
        """
        Await query_fn() and record its latency as a cache miss.

        If query_fn raises, the error observation is recorded and the original
        exception propagates unchanged.
        """
        start = time.perf_counter()
        try:
            result = await query_fn()
        except Exception as e:
            self.record_observation(query_id, _elapsed_ms(start), False, e)
            raise

        self.record_observation(query_id, _elapsed_ms(start), False)
        return result

    def reset(self) -> None:
        """Forget all statistics."""
        self._stats.clear()

    # ========================================================================
    # Reporting
    # ========================================================================

    def _records(self) -> List[Dict[str, Any]]:
        return [
            {"query_id": query_id, **asdict(stats), "cache_hit_rate": stats.cache_hit_rate}
            for query_id, stats in self._stats.items()
        ]

    def get_performance_stats(self, top_n: int = 10) -> Dict[str, Any]:
        """
        Aggregate statistics across all tracked queries.

        Returns:
            Dict with:
                - total_queries: Sum of observation counts
                - tracked_queries: Number of distinct query identifiers
                - slow_queries: Queries whose average exceeds the threshold
                - top_slow_queries: Top-N by avg_time (only avg_time > 0)
                - top_cached_queries: Top-N by cache_hits
                - total_errors: Sum of error counts
        """
        records = self._records()

        slow = [r for r in records if r["avg_time"] > 0]
        slow.sort(key=lambda r: r["avg_time"], reverse=True)
        cached = sorted(records, key=lambda r: r["cache_hits"], reverse=True)

        return {
            "total_queries": sum(r["count"] for r in records),
            "tracked_queries": len(self),
            "slow_queries": sum(
                1 for r in records if r["avg_time"] > self.slow_query_threshold_ms
            ),
            "top_slow_queries": slow[:top_n],
            "top_cached_queries": cached[:top_n],
            "total_errors": sum(r["errors"] for r in records),
        }

    def slow_queries_report(self, limit: int = 5) -> List[Dict[str, Any]]:
        """Queries above the slow threshold, slowest first."""
        slow = [
            {"id": query_id, "avg_time": stats.avg_time, "count": stats.count}
            for query_id, stats in self._stats.items()
            if stats.avg_time > self.slow_query_threshold_ms
        ]
        slow.sort(key=lambda r: r["avg_time"], reverse=True)
        return slow[:limit]


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
