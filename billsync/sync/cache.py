"""
Bill Cache

Session-scoped map from AggregateKey to the last known BillAggregate.

DESIGN DECISION: Entries are never evicted by age. An entry older than the
TTL is marked stale the next time it is read and is still returned, so month
navigation stays instant while the caller decides whether to refresh. Only
invalidate() and clear() remove entries.

Every write and invalidation bumps a per-key generation. Background loads
remember the generation they started from and write back with
set_if_generation(), so a slow fetch can never overwrite a newer save.

Aggregates are deep-copied on the way in and on the way out. Callers never
hold the cached object, so an unsaved edit cannot leak into the cache.
"""

import threading
import time
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, Field

from billsync.config import SyncSettings
from billsync.models.bill import AggregateKey, BillAggregate
from billsync.sync.metrics import PerformanceMonitor


logger = structlog.get_logger(__name__)


class CacheEntry(BaseModel):
    """A cached aggregate and its bookkeeping."""

    aggregate: BillAggregate
    written_at: float = Field(..., description="Clock reading at write time")
    stale: bool = False
    generation: int = 0


class BillCache:
    """TTL-tagged, generation-guarded aggregate cache."""

    def __init__(
        self,
        ttl_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
        monitor: Optional[PerformanceMonitor] = None,
    ):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._monitor = monitor
        self._entries: dict[str, CacheEntry] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        clock: Callable[[], float] = time.monotonic,
        monitor: Optional[PerformanceMonitor] = None,
    ) -> "BillCache":
        return cls(ttl_seconds=settings.cache_ttl_seconds, clock=clock, monitor=monitor)

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def _bump(self, cache_key: str) -> int:
        generation = self._generations.get(cache_key, 0) + 1
        self._generations[cache_key] = generation
        return generation

    def get_entry(self, key: AggregateKey) -> Optional[CacheEntry]:
        """Return the entry for `key`, marking it stale if past its TTL."""
        with self._lock:
            entry = self._entries.get(key.cache_key)
            if entry is None:
                return None
            if not entry.stale and self._clock() - entry.written_at > self._ttl_seconds:
                entry.stale = True
                logger.debug("cache_entry_stale", key=key.cache_key)
            return entry.model_copy(deep=True)

    def get(self, key: AggregateKey) -> Optional[BillAggregate]:
        """Return the cached aggregate (stale or not), or None on a miss."""
        entry = self.get_entry(key)
        if self._monitor is not None:
            if entry is None:
                self._monitor.record_cache_miss()
            else:
                self._monitor.record_cache_hit()
        return entry.aggregate if entry else None

    def set(self, key: AggregateKey, aggregate: BillAggregate) -> int:
        """Store a fresh entry and return its generation."""
        with self._lock:
            generation = self._bump(key.cache_key)
            self._entries[key.cache_key] = CacheEntry(
                aggregate=aggregate.model_copy(deep=True),
                written_at=self._clock(),
                generation=generation,
            )
            return generation

    def set_if_generation(
        self,
        key: AggregateKey,
        aggregate: BillAggregate,
        expected: int,
    ) -> bool:
        """
        Store `aggregate` only if nothing touched `key` since `expected`.

        Returns:
            True if written, False if a newer write or invalidation won
        """
        with self._lock:
            current = self._generations.get(key.cache_key, 0)
            if current != expected:
                logger.debug(
                    "cache_write_superseded",
                    key=key.cache_key,
                    expected=expected,
                    current=current,
                )
                return False
            generation = self._bump(key.cache_key)
            self._entries[key.cache_key] = CacheEntry(
                aggregate=aggregate.model_copy(deep=True),
                written_at=self._clock(),
                generation=generation,
            )
            return True

    def generation(self, key: AggregateKey) -> int:
        with self._lock:
            return self._generations.get(key.cache_key, 0)

    def invalidate(self, key: AggregateKey) -> bool:
        """Drop the entry for `key`. Returns True if there was one."""
        with self._lock:
            self._bump(key.cache_key)
            return self._entries.pop(key.cache_key, None) is not None

    def is_stale(self, key: AggregateKey) -> bool:
        entry = self.get_entry(key)
        return entry.stale if entry else False

    def clear(self) -> None:
        with self._lock:
            for cache_key in list(self._generations):
                self._bump(cache_key)
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, AggregateKey):
            return False
        with self._lock:
            return key.cache_key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
