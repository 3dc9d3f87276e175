"""
Performance Monitor

Tracks store call timings and cache effectiveness for one session.
Slow calls are logged as warnings so a degraded store shows up in the logs
before users start complaining about month navigation.
"""

import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

import structlog
from pydantic import BaseModel, Field


logger = structlog.get_logger(__name__)


class QueryMetrics(BaseModel):
    """Timing of one store call."""

    query_name: str
    execution_time_ms: float
    parameters: dict[str, Any] = Field(default_factory=dict)
    timestamp: float
    is_slow: bool
    succeeded: bool = True


class CacheMetrics(BaseModel):
    """Cache hit/miss counters."""

    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class PerformanceMonitor:
    """
    Collects timings and cache counters.

    Owned by one session; nothing here is process-global.
    """

    def __init__(
        self,
        slow_query_threshold_ms: float = 500.0,
        max_log_size: int = 100,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self._slow_query_threshold_ms = slow_query_threshold_ms
        self._queries: deque[QueryMetrics] = deque(maxlen=max_log_size)
        self._cache = CacheMetrics()
        self._clock = clock

    # Cache counters

    def record_cache_hit(self) -> None:
        self._cache.hits += 1

    def record_cache_miss(self) -> None:
        self._cache.misses += 1

    def cache_metrics(self) -> CacheMetrics:
        return self._cache.model_copy()

    # Query timings

    def log_query(
        self,
        query_name: str,
        execution_time_ms: float,
        parameters: Optional[dict[str, Any]] = None,
        succeeded: bool = True,
    ) -> QueryMetrics:
        """Record a finished store call, warning if it was slow."""
        metrics = QueryMetrics(
            query_name=query_name,
            execution_time_ms=execution_time_ms,
            parameters=parameters or {},
            timestamp=time.time(),
            is_slow=execution_time_ms > self._slow_query_threshold_ms,
            succeeded=succeeded,
        )
        self._queries.append(metrics)

        if metrics.is_slow:
            logger.warning(
                "slow_query",
                query=query_name,
                execution_time_ms=round(execution_time_ms, 1),
                **metrics.parameters,
            )
        else:
            logger.debug(
                "query_timed",
                query=query_name,
                execution_time_ms=round(execution_time_ms, 1),
            )
        return metrics

    @asynccontextmanager
    async def track(self, query_name: str, **parameters: Any) -> AsyncIterator[None]:
        """Time the body of an ``async with`` block as one store call."""
        started = self._clock()
        succeeded = False
        try:
            yield
            succeeded = True
        finally:
            elapsed_ms = (self._clock() - started) * 1000
            self.log_query(query_name, elapsed_ms, parameters, succeeded=succeeded)

    def recent_queries(self) -> list[QueryMetrics]:
        return list(self._queries)

    def slow_queries(self) -> list[QueryMetrics]:
        return [q for q in self._queries if q.is_slow]

    def average_time_ms(self, query_name: Optional[str] = None) -> float:
        times = [
            q.execution_time_ms
            for q in self._queries
            if query_name is None or q.query_name == query_name
        ]
        return sum(times) / len(times) if times else 0.0

    def reset(self) -> None:
        self._queries.clear()
        self._cache = CacheMetrics()
