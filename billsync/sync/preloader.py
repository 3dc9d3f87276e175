"""
Preloader

Warms the cache with the months either side of the one being displayed, so
stepping back or forward a month is served from memory.

Preloads are best-effort: they run as background tasks owned by this object,
skip months already cached, and never raise. A failed preload is logged and
audited; the month is simply fetched on demand later.
"""

import asyncio
from typing import Optional

import structlog
from pydantic import ValidationError

from billsync.audit import AuditLogger
from billsync.models.bill import AggregateKey
from billsync.sync.cache import BillCache
from billsync.sync.fetcher import AggregateFetcher


logger = structlog.get_logger(__name__)


class Preloader:
    """Background loader for adjacent months."""

    def __init__(
        self,
        fetcher: AggregateFetcher,
        cache: BillCache,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._fetcher = fetcher
        self._cache = cache
        self._audit_logger = audit_logger
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def preload(self, tenant_id: int, month: int, year: int) -> asyncio.Task:
        """
        Schedule loading of the previous and next month. Returns immediately.

        Must be called from within a running event loop.
        """
        key = AggregateKey(tenant_id=tenant_id, month=month, year=year)
        task = asyncio.get_running_loop().create_task(
            self._preload_adjacent(key),
            name=f"preload-{key.cache_key}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _preload_adjacent(self, key: AggregateKey) -> None:
        await asyncio.gather(*(self._preload_one(k) for k in _neighbours(key)))

    async def _preload_one(self, key: AggregateKey) -> None:
        if key in self._cache:
            return

        generation = self._cache.generation(key)
        try:
            aggregate = await self._fetcher.fetch(key.tenant_id, key.month, key.year)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("preload_failed", key=key.cache_key, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_preload_failed(key=key, error_message=str(e))
            return

        if self._cache.set_if_generation(key, aggregate, generation):
            logger.debug("preloaded", key=key.cache_key)

    async def wait_idle(self) -> None:
        """Wait until every scheduled preload has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding preloads."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


def _neighbours(key: AggregateKey) -> list[AggregateKey]:
    """The months either side of `key` that exist on the calendar."""
    neighbours = []
    for step in (key.previous, key.next):
        try:
            neighbours.append(step())
        except ValidationError:
            logger.debug("preload_out_of_range", key=key.cache_key)
    return neighbours
