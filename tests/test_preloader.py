"""
Tests for background preloading of adjacent months.
"""

import asyncio

import pytest

from billsync.audit import AuditLogger
from billsync.models.audit import AuditEventType
from billsync.models.bill import AggregateKey
from billsync.services.store import StoreUnavailableError
from billsync.sync.cache import BillCache
from billsync.sync.fetcher import AggregateFetcher
from billsync.sync.preloader import Preloader
from billsync.sync.retry import RetryingExecutor

from conftest import OWNER_ID, TENANT_ID, RecordingSleep, make_aggregate


def make_preloader(store, cache, audit_storage=None, max_retries=2):
    executor = RetryingExecutor(max_retries=max_retries, sleep=RecordingSleep())
    audit_logger = AuditLogger(audit_storage)
    fetcher = AggregateFetcher(store, executor, OWNER_ID, audit_logger)
    return Preloader(fetcher, cache, audit_logger)


def key(month, year):
    return AggregateKey(tenant_id=TENANT_ID, month=month, year=year)


class TestPreloader:
    """Tests for which months get loaded."""

    @pytest.mark.asyncio
    async def test_january_preloads_december_and_february(self, store):
        """Adjacent months roll over the year boundary correctly."""
        cache = BillCache()
        preloader = make_preloader(store, cache)

        preloader.preload(TENANT_ID, 1, 2025)
        await preloader.wait_idle()

        assert key(12, 2024) in cache
        assert key(2, 2025) in cache
        assert key(1, 2025) not in cache

    @pytest.mark.asyncio
    async def test_december_preloads_next_january(self, store):
        """December's next month is in the following year."""
        cache = BillCache()
        preloader = make_preloader(store, cache)

        preloader.preload(TENANT_ID, 12, 2024)
        await preloader.wait_idle()

        assert key(11, 2024) in cache
        assert key(1, 2025) in cache

    @pytest.mark.asyncio
    async def test_cached_months_skipped(self, store):
        """Months already cached are not fetched again."""
        cache = BillCache()
        cached = make_aggregate(12, 2024)
        cache.set(key(12, 2024), cached)
        preloader = make_preloader(store, cache)

        preloader.preload(TENANT_ID, 1, 2025)
        await preloader.wait_idle()

        fetched = {(c[2], c[3]) for c in store.calls_to("combined_read")}
        assert fetched == {(2, 2025)}
        assert cache.get(key(12, 2024)) == cached

    @pytest.mark.asyncio
    async def test_first_month_preloads_only_next(self, store):
        """January of year 1 has no previous month; the task still succeeds."""
        cache = BillCache()
        preloader = make_preloader(store, cache)

        task = preloader.preload(TENANT_ID, 1, 1)
        await preloader.wait_idle()

        assert task.exception() is None
        assert key(2, 1) in cache
        assert {(c[2], c[3]) for c in store.calls_to("combined_read")} == {(2, 1)}

    @pytest.mark.asyncio
    async def test_preload_returns_immediately(self, store):
        """Scheduling does not wait for the loads."""
        cache = BillCache()
        preloader = make_preloader(store, cache)

        task = preloader.preload(TENANT_ID, 6, 2025)

        assert not task.done()
        assert preloader.pending == 1
        await preloader.wait_idle()
        assert preloader.pending == 0


class TestPreloaderFailures:
    """Tests for best-effort behaviour."""

    @pytest.mark.asyncio
    async def test_failure_is_swallowed_and_audited(self, store, audit_storage):
        """A failing neighbour is logged; the other one still loads."""
        cache = BillCache()
        preloader = make_preloader(store, cache, audit_storage, max_retries=0)
        # Both paths fail for exactly one of the two loads
        store.inject_failure("combined_read", StoreUnavailableError("503"))
        store.inject_failure("get_bill", StoreUnavailableError("503"), times=2)

        task = preloader.preload(TENANT_ID, 1, 2025)
        await preloader.wait_idle()

        assert task.exception() is None
        assert len(cache) == 1
        failures = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.PRELOAD_FAILED
        ]
        assert len(failures) == 1

    @pytest.mark.asyncio
    async def test_unknown_tenant_swallowed(self, store):
        """Preloading for a tenant that does not exist raises nothing."""
        cache = BillCache()
        preloader = make_preloader(store, cache)

        task = preloader.preload(99, 1, 2025)
        await preloader.wait_idle()

        assert task.exception() is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_preload_does_not_overwrite_newer_write(self, store):
        """A save that lands mid-preload wins over the preloaded copy."""
        cache = BillCache()
        preloader = make_preloader(store, cache)
        saved = make_aggregate(2, 2025)

        preloader.preload(TENANT_ID, 1, 2025)
        # Let the preload read the generation and start its fetch
        await asyncio.sleep(0)
        cache.set(key(2, 2025), saved)
        await preloader.wait_idle()

        assert cache.get(key(2, 2025)) == saved

    @pytest.mark.asyncio
    async def test_aclose_cancels_pending(self, store):
        """Closing stops outstanding preloads."""
        cache = BillCache()
        preloader = make_preloader(store, cache)

        preloader.preload(TENANT_ID, 1, 2025)
        await preloader.aclose()

        assert preloader.pending == 0
