"""
Shared fixtures for Bill Sync tests.

No real store and no real waiting: the store is in-memory, backoff sleeps are
recorded instead of slept, and cache ages come from a hand-driven clock.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from billsync.config import Settings
from billsync.models.bill import (
    AdditionalExpense,
    BillAggregate,
    BillPayment,
    MonthlyBill,
)
from billsync.orchestrator import create_sync_components
from billsync.services.store import InMemoryAuditStorage, InMemoryBillStore


TENANT_ID = 7
OWNER_ID = "user-1"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_bill(
    month: int,
    year: int,
    tenant_id: int = TENANT_ID,
    electricity: tuple[int, int] = (0, 0),
    motor: tuple[int, int] = (0, 0),
    rent: str = "5000",
) -> MonthlyBill:
    return MonthlyBill(
        tenant_id=tenant_id,
        month=month,
        year=year,
        rent_amount=Decimal(rent),
        electricity_enabled=True,
        electricity_initial_reading=electricity[0],
        electricity_final_reading=electricity[1],
        motor_enabled=True,
        motor_initial_reading=motor[0],
        motor_final_reading=motor[1],
    )


def make_aggregate(
    month: int,
    year: int,
    tenant_id: int = TENANT_ID,
    bill: Optional[MonthlyBill] = None,
    expenses: Optional[list[AdditionalExpense]] = None,
    payments: Optional[list[BillPayment]] = None,
) -> BillAggregate:
    return BillAggregate(
        tenant_id=tenant_id,
        month=month,
        year=year,
        bill=bill if bill is not None else make_bill(month, year, tenant_id),
        expenses=expenses or [],
        payments=payments or [],
    )


def expense(description: str, amount: str, expense_id=None) -> AdditionalExpense:
    return AdditionalExpense(
        id=expense_id,
        description=description,
        amount=Decimal(amount),
        date=date(2025, 1, 10),
    )


def payment(amount: str, payment_id=None) -> BillPayment:
    return BillPayment(
        id=payment_id,
        amount=Decimal(amount),
        payment_date=date(2025, 1, 15),
    )


@pytest.fixture
def store() -> InMemoryBillStore:
    store = InMemoryBillStore()
    store.add_tenant(TENANT_ID, OWNER_ID)
    return store


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def facade(store, sleep, clock, audit_storage):
    return create_sync_components(
        store,
        OWNER_ID,
        settings=Settings(),
        sleep=sleep,
        clock=clock,
        audit_storage=audit_storage,
    )
