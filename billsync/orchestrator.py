"""
Main Orchestrator for Bill Sync

This module ties the sync components together behind the two calls the
presentation layer makes:
1. Display (cache → fetch on miss → cache → preload neighbours)
2. Save (optimistic cache write → reconcile → absorb identities or invalidate)

DESIGN DECISION: The facade enforces the boundaries:
- A failed load never touches the cache
- A failed save never leaves unsaved data in the cache
- A background load never overwrites a newer write (generation check)
- Every step is audited

One facade serves one user session. Nothing here is module-global; build a
fresh set of components per session with create_sync_components().
"""

import asyncio
import time
from decimal import Decimal
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from billsync.audit import AuditLogger, create_correlation_id
from billsync.config import Settings, SyncSettings, get_settings
from billsync.models.bill import (
    AggregateKey,
    BillAggregate,
    DisplayedAggregate,
    ReconciliationOutcome,
)
from billsync.services.store import (
    AccessDeniedError,
    AuditStorageInterface,
    BillStoreInterface,
    NotFoundError,
)
from billsync.sync import (
    AggregateFetcher,
    BillCache,
    CacheMetrics,
    LoadFailedError,
    PerformanceMonitor,
    Preloader,
    ReconciliationWriter,
    RetryingExecutor,
    SaveFailedError,
)


logger = structlog.get_logger(__name__)


class BillSyncFacade:
    """
    Orchestrates display and save of monthly bill aggregates.

    Display flow:
    1. Cache hit → return it (tagged stale past the TTL), no store I/O
    2. Cache miss → fetch (with retries) → cache → return
    3. Either way → preload the previous and next month in the background

    Save flow:
    1. Write the aggregate to the cache immediately (optimistic)
    2. Reconcile it into the store (with retries)
    3. Success → cache the copy carrying store-assigned identities
       Failure → drop the cache entry and raise
    """

    def __init__(
        self,
        fetcher: AggregateFetcher,
        writer: ReconciliationWriter,
        cache: BillCache,
        preloader: Preloader,
        audit_logger: Optional[AuditLogger] = None,
        monitor: Optional[PerformanceMonitor] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self._fetcher = fetcher
        self._writer = writer
        self._cache = cache
        self._preloader = preloader
        self._audit_logger = audit_logger
        self._monitor = monitor
        self._settings = settings or SyncSettings()

    @property
    def cache(self) -> BillCache:
        return self._cache

    @property
    def preloader(self) -> Preloader:
        return self._preloader

    async def display(
        self,
        tenant_id: int,
        month: int,
        year: int,
        correlation_id: Optional[UUID] = None,
    ) -> DisplayedAggregate:
        """
        Return the aggregate for a month, from cache when possible.

        Raises:
            NotFoundError / AccessDeniedError: Tenant missing or not ours
            LoadFailedError: The store could not be read
        """
        key = AggregateKey(tenant_id=tenant_id, month=month, year=year)

        entry = self._cache.get_entry(key)
        if entry is not None:
            if self._monitor:
                self._monitor.record_cache_hit()
            logger.debug("cache_hit", key=key.cache_key, stale=entry.stale)
            self._preloader.preload(tenant_id, month, year)
            return DisplayedAggregate(
                aggregate=entry.aggregate,
                stale=entry.stale,
                from_cache=True,
            )

        if self._monitor:
            self._monitor.record_cache_miss()
        correlation_id = correlation_id or create_correlation_id()
        generation = self._cache.generation(key)

        try:
            aggregate = await self._fetcher.fetch(
                tenant_id, month, year, correlation_id=correlation_id
            )
        except (NotFoundError, AccessDeniedError):
            raise
        except Exception as e:
            logger.error("load_failed", key=key.cache_key, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_load_failed(
                    key=key,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise LoadFailedError(key, e) from e

        self._cache.set_if_generation(key, aggregate, generation)
        self._preloader.preload(tenant_id, month, year)
        return DisplayedAggregate(aggregate=aggregate, stale=False, from_cache=False)

    async def save(
        self,
        tenant_id: int,
        month: int,
        year: int,
        aggregate: BillAggregate,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationOutcome:
        """
        Persist a month, updating the cache optimistically.

        Returns:
            ReconciliationOutcome with the identities the store assigned

        Raises:
            ValueError: The aggregate has no bill or belongs to another month
            NotFoundError / AccessDeniedError: Tenant missing or not ours
            SaveFailedError: The store refused the write or could not be reached
        """
        key = AggregateKey(tenant_id=tenant_id, month=month, year=year)
        if aggregate.key != key:
            raise ValueError(f"Aggregate for {aggregate.key} cannot be saved as {key}")
        if aggregate.bill is None:
            raise ValueError(f"Nothing to save for {key}: the aggregate has no bill")

        correlation_id = correlation_id or create_correlation_id()
        previous = self._cache.get_entry(key)

        # Step 1: Optimistic write
        generation = self._cache.set(key, aggregate)
        if self._audit_logger:
            await self._audit_logger.log_optimistic_write(
                key=key,
                expense_count=len(aggregate.expenses),
                payment_count=len(aggregate.payments),
                correlation_id=correlation_id,
            )

        # Step 2: Reconcile
        try:
            outcome = await self._writer.save(
                aggregate,
                previous=previous.aggregate if previous else None,
            )
        except Exception as e:
            self._cache.invalidate(key)
            logger.error("save_failed", key=key.cache_key, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_save_failed(
                    key=key,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
                await self._audit_logger.log_cache_invalidated(
                    key=key,
                    reason="save_failed",
                    correlation_id=correlation_id,
                )
            if isinstance(e, (NotFoundError, AccessDeniedError)):
                raise
            raise SaveFailedError(key, e) from e

        # Step 3: Absorb identities, unless a newer write already replaced ours
        if not self._cache.set_if_generation(
            key, aggregate.with_identities(outcome), generation
        ):
            logger.info("save_result_superseded", key=key.cache_key)

        if self._audit_logger:
            await self._audit_logger.log_save_reconciled(
                key=key,
                bill_id=outcome.bill_id,
                expense_count=len(outcome.expense_ids),
                payment_count=len(outcome.payment_ids),
                correlation_id=correlation_id,
            )
        return outcome

    async def invalidate(
        self,
        tenant_id: int,
        month: int,
        year: int,
        reason: str = "requested",
    ) -> bool:
        """Drop a month from the cache so the next display reads the store."""
        key = AggregateKey(tenant_id=tenant_id, month=month, year=year)
        removed = self._cache.invalidate(key)
        if self._audit_logger:
            await self._audit_logger.log_cache_invalidated(key=key, reason=reason)
        return removed

    async def refresh(
        self,
        tenant_id: int,
        month: int,
        year: int,
    ) -> DisplayedAggregate:
        """Re-read a month from the store regardless of the cache."""
        await self.invalidate(tenant_id, month, year, reason="refresh")
        return await self.display(tenant_id, month, year)

    def draft(self, aggregate: BillAggregate, monthly_rent: Decimal) -> BillAggregate:
        """
        Give a never-saved month a bill seeded with last month's readings.

        An aggregate that already has a bill is returned unchanged.
        """
        if aggregate.bill is not None:
            return aggregate
        bill = aggregate.draft_bill(
            monthly_rent,
            multiplier=Decimal(str(self._settings.default_multiplier)),
            number_of_people=self._settings.default_number_of_people,
        )
        return aggregate.model_copy(update={"bill": bill}).with_recalculated_totals()

    def cache_metrics(self) -> CacheMetrics:
        if self._monitor is None:
            return CacheMetrics()
        return self._monitor.cache_metrics()

    async def aclose(self) -> None:
        """Stop background preloads. Call when the session ends."""
        await self._preloader.aclose()


def create_sync_components(
    store: BillStoreInterface,
    requester_id: str,
    settings: Optional[Settings] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> BillSyncFacade:
    """
    Factory function to create a fully wired facade for one session.

    Args:
        store: The bill store to read from and write to
        requester_id: The signed-in user; the store checks tenant ownership
        settings: Settings to use (defaults to get_settings())
        sleep: Backoff sleep (tests pass a recorder)
        clock: Monotonic clock for cache ages (tests pass a fake)
        audit_storage: Where audit events are persisted; local logs only if None

    Returns:
        BillSyncFacade
    """
    sync_settings = (settings or get_settings()).sync

    monitor = PerformanceMonitor(
        slow_query_threshold_ms=sync_settings.slow_query_threshold_ms,
        max_log_size=sync_settings.query_log_size,
    )
    audit_logger = AuditLogger(audit_storage)
    executor = RetryingExecutor.from_settings(sync_settings, monitor=monitor, sleep=sleep)
    cache = BillCache.from_settings(sync_settings, clock=clock)

    fetcher = AggregateFetcher(store, executor, requester_id, audit_logger)
    writer = ReconciliationWriter(store, executor, requester_id)
    preloader = Preloader(fetcher, cache, audit_logger)

    return BillSyncFacade(
        fetcher=fetcher,
        writer=writer,
        cache=cache,
        preloader=preloader,
        audit_logger=audit_logger,
        monitor=monitor,
        settings=sync_settings,
    )
