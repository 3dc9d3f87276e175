"""
Tests for the aggregate fetcher: combined read, fallback and carry-forward.
"""

import asyncio

import pytest

from billsync.audit import AuditLogger
from billsync.models.audit import AuditEventType
from billsync.services.store import (
    AccessDeniedError,
    InMemoryAuditStorage,
    InMemoryBillStore,
    NotFoundError,
    StoreUnavailableError,
)
from billsync.sync.errors import RetryExhaustedError
from billsync.sync.fetcher import AggregateFetcher
from billsync.sync.retry import RetryingExecutor

from conftest import OWNER_ID, TENANT_ID, RecordingSleep, make_bill


async def seed(store, month, year, electricity=(0, 0), motor=(0, 0), expenses=()):
    bill = make_bill(month, year, electricity=electricity, motor=motor)
    return await store.reconcile_write(
        bill.to_store_fields(),
        [
            {"id": None, "description": d, "amount": a, "date": f"{year}-{month:02d}-05"}
            for d, a in expenses
        ],
        [],
        OWNER_ID,
    )


def make_fetcher(store, audit_storage=None, requester_id=OWNER_ID):
    executor = RetryingExecutor(sleep=RecordingSleep())
    return AggregateFetcher(store, executor, requester_id, AuditLogger(audit_storage))


class TestCombinedRead:
    """Tests for the primary single-call path."""

    @pytest.mark.asyncio
    async def test_loads_bill_children_and_previous_readings(self, store):
        """One call returns the whole month."""
        await seed(store, 2, 2025, electricity=(100, 180))
        await seed(store, 3, 2025, electricity=(180, 260), expenses=[("Paint", "200")])
        store.calls.clear()

        aggregate = await make_fetcher(store).fetch(TENANT_ID, 3, 2025)

        assert aggregate.bill.electricity_final_reading == 260
        assert [e.description for e in aggregate.expenses] == ["Paint"]
        assert aggregate.expenses[0].is_assigned
        assert aggregate.previous_readings.electricity_final == 180
        assert [c[0] for c in store.calls] == ["combined_read"]

    @pytest.mark.asyncio
    async def test_year_boundary_carry_forward(self, store):
        """January with no bill reads December's final readings."""
        await seed(store, 12, 2024, electricity=(500, 600), motor=(200, 250))

        aggregate = await make_fetcher(store).fetch(TENANT_ID, 1, 2025)

        assert aggregate.bill is None
        assert aggregate.expenses == []
        assert aggregate.payments == []
        assert aggregate.previous_readings.electricity_final == 600
        assert aggregate.previous_readings.motor_final == 250

    @pytest.mark.asyncio
    async def test_no_previous_bill_starts_at_zero(self, store):
        """Without last month's bill, readings carry forward as zero."""
        aggregate = await make_fetcher(store).fetch(TENANT_ID, 6, 2025)
        assert aggregate.previous_readings.electricity_final == 0
        assert aggregate.previous_readings.motor_final == 0

    @pytest.mark.asyncio
    async def test_load_audited_with_source(self, store, audit_storage):
        """The audit trail records which path served the read."""
        await make_fetcher(store, audit_storage).fetch(TENANT_ID, 1, 2025)

        loaded = [e for e in audit_storage.events if e.event_type == AuditEventType.AGGREGATE_LOADED]
        assert len(loaded) == 1
        assert loaded[0].details["source"] == "combined"


class TestSeparateReadFallback:
    """Tests for the decomposed fallback path."""

    @pytest.mark.asyncio
    async def test_unsupported_combined_read_falls_back(self, audit_storage):
        """Both paths produce the same aggregate."""
        combined_store = InMemoryBillStore()
        separate_store = InMemoryBillStore(combined_read_supported=False)
        for s in (combined_store, separate_store):
            s.add_tenant(TENANT_ID, OWNER_ID)

        results = []
        for s in (combined_store, separate_store):
            await seed(s, 12, 2024, electricity=(500, 600), motor=(200, 250))
            await seed(s, 1, 2025, electricity=(600, 700), expenses=[("Paint", "200")])
            aggregate = await make_fetcher(s, audit_storage).fetch(TENANT_ID, 1, 2025)
            results.append(aggregate)

        combined, separate = results
        assert separate.previous_readings == combined.previous_readings
        assert separate.bill.electricity_final_reading == combined.bill.electricity_final_reading
        assert [e.description for e in separate.expenses] == ["Paint"]

        operations = {c[0] for c in separate_store.calls}
        assert {"get_bill", "get_expenses", "get_payments"} <= operations
        fallbacks = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.COMBINED_READ_FALLBACK
        ]
        assert len(fallbacks) == 1

    @pytest.mark.asyncio
    async def test_fallback_reads_previous_period_across_year(self):
        """The separate path also rolls January back to December."""
        store = InMemoryBillStore(combined_read_supported=False)
        store.add_tenant(TENANT_ID, OWNER_ID)
        await seed(store, 12, 2024, electricity=(500, 600), motor=(200, 250))

        aggregate = await make_fetcher(store).fetch(TENANT_ID, 1, 2025)

        assert aggregate.bill is None
        assert aggregate.previous_readings.electricity_final == 600
        assert ("get_bill", TENANT_ID, 12, 2024) in store.calls
        # No bill, so no child reads
        assert store.calls_to("get_expenses") == []

    @pytest.mark.asyncio
    async def test_transient_combined_failure_falls_back(self, store):
        """A failing combined read is answered by the separate reads."""
        await seed(store, 1, 2025, electricity=(0, 50))
        store.inject_failure("combined_read", StoreUnavailableError("503"))

        aggregate = await make_fetcher(store).fetch(TENANT_ID, 1, 2025)

        assert aggregate.bill.electricity_final_reading == 50
        assert len(store.calls_to("combined_read")) == 1

    @pytest.mark.asyncio
    async def test_both_paths_failing_exhausts_retries(self, store):
        """When neither path works the fetch gives up after 3 attempts."""
        store.inject_failure("combined_read", StoreUnavailableError("503"), times=3)
        store.inject_failure("get_bill", StoreUnavailableError("503"), times=6)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await make_fetcher(store).fetch(TENANT_ID, 1, 2025)

        assert exc_info.value.attempts == 3
        assert exc_info.value.operation == "fetch_aggregate"


class TestFetchAccess:
    """Tests for missing and foreign tenants."""

    @pytest.mark.asyncio
    async def test_unknown_tenant_not_found(self, store):
        """NotFoundError propagates without retry or fallback."""
        with pytest.raises(NotFoundError):
            await make_fetcher(store).fetch(99, 1, 2025)
        assert [c[0] for c in store.calls] == ["combined_read"]

    @pytest.mark.asyncio
    async def test_foreign_tenant_denied(self, store):
        """Another user's tenant raises AccessDeniedError."""
        with pytest.raises(AccessDeniedError):
            await make_fetcher(store, requester_id="user-2").fetch(TENANT_ID, 1, 2025)

class SlowAuditStorage(InMemoryAuditStorage):
    """Audit storage whose writes take longer than one fetch attempt may."""

    async def append_event(self, event):
        await asyncio.sleep(0.1)
        return await super().append_event(event)


class TestFetchAuditing:
    """Tests for audit writes around the timed attempt."""

    @pytest.mark.asyncio
    async def test_slow_audit_does_not_fail_the_fetch(self, store):
        """Audit latency is not charged to the attempt's timeout."""
        audit_storage = SlowAuditStorage()
        executor = RetryingExecutor(max_retries=0, timeout=0.05, sleep=RecordingSleep())
        fetcher = AggregateFetcher(store, executor, OWNER_ID, AuditLogger(audit_storage))

        aggregate = await fetcher.fetch(TENANT_ID, 1, 2025)

        assert aggregate.bill is None
        assert len(store.calls_to("combined_read")) == 1
        loaded = [e for e in audit_storage.events if e.event_type == AuditEventType.AGGREGATE_LOADED]
        assert len(loaded) == 1

    @pytest.mark.asyncio
    async def test_slow_audit_on_fallback_does_not_retry(self):
        """The fallback event is written once, after the attempt succeeded."""
        store = InMemoryBillStore(combined_read_supported=False)
        store.add_tenant(TENANT_ID, OWNER_ID)
        audit_storage = SlowAuditStorage()
        executor = RetryingExecutor(max_retries=0, timeout=0.05, sleep=RecordingSleep())
        fetcher = AggregateFetcher(store, executor, OWNER_ID, AuditLogger(audit_storage))

        await fetcher.fetch(TENANT_ID, 3, 2025)

        assert len(store.calls_to("get_bill")) == 2
        fallbacks = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.COMBINED_READ_FALLBACK
        ]
        assert len(fallbacks) == 1
        loaded = [e for e in audit_storage.events if e.event_type == AuditEventType.AGGREGATE_LOADED]
        assert loaded[0].details["source"] == "separate"


class TestFirstPeriod:
    """Tests for January of year 1, which has no previous month."""

    @pytest.mark.asyncio
    async def test_combined_read_starts_at_zero(self, store):
        """The first representable month carries nothing forward."""
        aggregate = await make_fetcher(store).fetch(TENANT_ID, 1, 1)
        assert aggregate.bill is None
        assert aggregate.previous_readings.electricity_final == 0
        assert aggregate.previous_readings.motor_final == 0

    @pytest.mark.asyncio
    async def test_separate_read_skips_previous_month(self):
        """The fallback reads only the current bill."""
        store = InMemoryBillStore(combined_read_supported=False)
        store.add_tenant(TENANT_ID, OWNER_ID)

        aggregate = await make_fetcher(store).fetch(TENANT_ID, 1, 1)

        assert aggregate.previous_readings.electricity_final == 0
        assert store.calls_to("get_bill") == [("get_bill", TENANT_ID, 1, 1)]
