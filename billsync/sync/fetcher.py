"""
Aggregate Fetcher

Loads one month (bill + expenses + payments + last month's final readings).

Primary path: a single combined read that joins everything server-side.
Fallback: separate reads. The current and previous bill are read together,
then, if the month has a bill, its expenses and payments are read together.

A missing or foreign tenant is an answer, not an outage: it propagates
instead of triggering the fallback or a retry.
"""

import asyncio
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from billsync.audit import AuditLogger
from billsync.models.bill import (
    AdditionalExpense,
    AggregateKey,
    BillAggregate,
    BillPayment,
    MonthlyBill,
    PreviousReadings,
)
from billsync.services.store import (
    AccessDeniedError,
    BillStoreInterface,
    MalformedPayloadError,
    NotFoundError,
    StorageError,
    UnsupportedOperationError,
)
from billsync.sync.retry import RetryingExecutor


logger = structlog.get_logger(__name__)


class AggregateFetcher:
    """Reads bill aggregates from the store, validated into models."""

    def __init__(
        self,
        store: BillStoreInterface,
        executor: RetryingExecutor,
        requester_id: str,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._executor = executor
        self._requester_id = requester_id
        self._audit_logger = audit_logger

    async def fetch(
        self,
        tenant_id: int,
        month: int,
        year: int,
        correlation_id: Optional[UUID] = None,
    ) -> BillAggregate:
        """
        Fetch the aggregate for (tenant, month, year).

        Raises:
            NotFoundError / AccessDeniedError: Tenant missing or not ours
            RetryExhaustedError: Both paths kept failing
        """
        key = AggregateKey(tenant_id=tenant_id, month=month, year=year)
        aggregate, fallback_reason = await self._executor.run(
            lambda: self._fetch_once(key),
            "fetch_aggregate",
            tenant_id=tenant_id,
            month=month,
            year=year,
        )

        # Audit writes stay outside the timed attempt
        if self._audit_logger:
            if fallback_reason is not None:
                await self._audit_logger.log_combined_read_fallback(
                    key=key,
                    reason=fallback_reason,
                    correlation_id=correlation_id,
                )
            await self._audit_logger.log_aggregate_loaded(
                key=key,
                source="combined" if fallback_reason is None else "separate",
                has_bill=aggregate.bill is not None,
                correlation_id=correlation_id,
            )
        return aggregate

    async def _fetch_once(
        self,
        key: AggregateKey,
    ) -> tuple[BillAggregate, Optional[str]]:
        """One attempt; returns the aggregate and the fallback reason, if any."""
        try:
            payload = await self._store.combined_read(
                key.tenant_id, key.month, key.year, self._requester_id
            )
            return self._parse_combined(key, payload), None
        except (NotFoundError, AccessDeniedError):
            raise
        except StorageError as e:
            reason = (
                "unsupported" if isinstance(e, UnsupportedOperationError) else str(e)
            )
            logger.warning(
                "combined_read_fallback",
                tenant_id=key.tenant_id,
                month=key.month,
                year=key.year,
                reason=reason,
            )
            return await self._fetch_decomposed(key), reason

    def _parse_combined(self, key: AggregateKey, payload: Any) -> BillAggregate:
        """Validate a combined-read payload; a bad one counts as a store error."""
        if payload is None:
            return BillAggregate.empty(key)
        if not isinstance(payload, dict):
            raise MalformedPayloadError(
                f"Combined read returned {type(payload).__name__}, expected an object"
            )
        try:
            return BillAggregate(
                tenant_id=key.tenant_id,
                month=key.month,
                year=key.year,
                bill=payload.get("bill"),
                expenses=payload.get("expenses") or [],
                payments=payload.get("payments") or [],
                previous_readings=payload.get("previous_readings") or {},
            )
        except ValidationError as e:
            raise MalformedPayloadError(f"Combined read payload rejected: {e}")

    async def _fetch_decomposed(self, key: AggregateKey) -> BillAggregate:
        if key.has_previous:
            previous = key.previous()
            bill_row, previous_row = await asyncio.gather(
                self._store.get_bill(key.tenant_id, key.month, key.year, self._requester_id),
                self._store.get_bill(
                    previous.tenant_id, previous.month, previous.year, self._requester_id
                ),
            )
        else:
            bill_row = await self._store.get_bill(
                key.tenant_id, key.month, key.year, self._requester_id
            )
            previous_row = None

        try:
            bill = MonthlyBill.model_validate(bill_row) if bill_row else None
            previous_bill = (
                MonthlyBill.model_validate(previous_row) if previous_row else None
            )
        except ValidationError as e:
            raise MalformedPayloadError(f"Bill row rejected: {e}")

        previous_readings = PreviousReadings.from_bill(previous_bill)
        if bill is None:
            return BillAggregate.empty(key, previous_readings)
        if bill.id is None:
            raise MalformedPayloadError(f"Stored bill for {key} has no identity")

        expense_rows, payment_rows = await asyncio.gather(
            self._store.get_expenses(bill.id),
            self._store.get_payments(bill.id),
        )

        try:
            return BillAggregate(
                tenant_id=key.tenant_id,
                month=key.month,
                year=key.year,
                bill=bill,
                expenses=[AdditionalExpense.model_validate(r) for r in expense_rows],
                payments=[BillPayment.model_validate(r) for r in payment_rows],
                previous_readings=previous_readings,
            )
        except ValidationError as e:
            raise MalformedPayloadError(f"Child rows rejected: {e}")
