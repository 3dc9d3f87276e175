"""
Core Data Models for Bill Sync

These models define the strict schemas for all data flowing between the
remote store, the cache and the presentation layer. They are designed to:
1. Enforce type safety at the store boundary (payloads arrive as loose JSON)
2. Make child identity explicit (assigned by the store, or not yet)
3. Be serializable for the store's wire format and for logging

DESIGN DECISION: A child record with ``id = None`` is UNASSIGNED - it has
never been persisted. Anything else is a store identity, and it is the only
thing the reconciliation uses to decide between update and delete.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


CENTS = Decimal("0.01")


def _blank_id_to_unassigned(value: Any) -> Any:
    """The store serializes a missing identity as null, "null" or ""."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
        return None
    return value


# =============================================================================
# ENUMS
# =============================================================================

class PaymentType(str, Enum):
    """How a tenant paid."""
    CASH = "cash"
    ONLINE = "online"


# =============================================================================
# AGGREGATE KEY
# =============================================================================

class AggregateKey(BaseModel):
    """
    Identity of one monthly aggregate: (tenant, month, year).

    Frozen so it can be used as a dict key and shared between tasks.
    """
    model_config = ConfigDict(frozen=True)

    tenant_id: int = Field(..., description="Tenant (renter) identifier")
    month: int = Field(..., ge=1, le=12, description="Calendar month, 1-12")
    year: int = Field(..., ge=1, description="Calendar year")

    @property
    def cache_key(self) -> str:
        """Deterministic, collision-free encoding used by the cache."""
        return f"{self.tenant_id}-{self.year}-{self.month}"

    @property
    def has_previous(self) -> bool:
        """False only for January of year 1, the first representable period."""
        return not (self.month == 1 and self.year == 1)

    def previous(self) -> "AggregateKey":
        """The immediately preceding period (January rolls back a year)."""
        if self.month == 1:
            return AggregateKey(tenant_id=self.tenant_id, month=12, year=self.year - 1)
        return AggregateKey(tenant_id=self.tenant_id, month=self.month - 1, year=self.year)

    def next(self) -> "AggregateKey":
        """The immediately following period (December rolls over a year)."""
        if self.month == 12:
            return AggregateKey(tenant_id=self.tenant_id, month=1, year=self.year + 1)
        return AggregateKey(tenant_id=self.tenant_id, month=self.month + 1, year=self.year)

    def __str__(self) -> str:
        return f"tenant {self.tenant_id} {self.month:02d}/{self.year}"


# =============================================================================
# STORE ROWS
# =============================================================================

class MonthlyBill(BaseModel):
    """
    The bill row for one tenant and month.

    Field names follow the store's columns so that a row can be validated
    straight from the wire and dumped back for a write.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: Optional[UUID] = Field(
        default=None,
        description="Store identity; None until the bill is first saved"
    )
    tenant_id: int
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1)

    rent_amount: Decimal = Field(default=Decimal("0"), ge=0)

    # Electricity
    electricity_enabled: bool = False
    electricity_initial_reading: int = Field(default=0, ge=0)
    electricity_final_reading: int = Field(default=0, ge=0)
    electricity_multiplier: Decimal = Field(default=Decimal("9"), gt=0)
    electricity_reading_date: Optional[date] = None
    electricity_amount: Decimal = Field(default=Decimal("0"), ge=0)

    # Motor (water pump), split across the people in the unit
    motor_enabled: bool = False
    motor_initial_reading: int = Field(default=0, ge=0)
    motor_final_reading: int = Field(default=0, ge=0)
    motor_multiplier: Decimal = Field(default=Decimal("9"), gt=0)
    motor_number_of_people: int = Field(default=2, ge=1)
    motor_reading_date: Optional[date] = None
    motor_amount: Decimal = Field(default=Decimal("0"), ge=0)

    # Flat charges
    water_enabled: bool = False
    water_amount: Decimal = Field(default=Decimal("0"), ge=0)
    maintenance_enabled: bool = False
    maintenance_amount: Decimal = Field(default=Decimal("0"), ge=0)

    # Running totals
    total_amount: Decimal = Decimal("0")
    total_payments: Decimal = Decimal("0")
    pending_amount: Decimal = Decimal("0")

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v: Any) -> Any:
        return _blank_id_to_unassigned(v)

    @model_validator(mode="after")
    def validate_readings(self) -> "MonthlyBill":
        """Meters only count up."""
        if self.electricity_final_reading < self.electricity_initial_reading:
            raise ValueError("Electricity final reading cannot be below the initial reading")
        if self.motor_final_reading < self.motor_initial_reading:
            raise ValueError("Motor final reading cannot be below the initial reading")
        return self

    @property
    def key(self) -> AggregateKey:
        return AggregateKey(tenant_id=self.tenant_id, month=self.month, year=self.year)

    def to_store_fields(self) -> dict[str, Any]:
        """Serialize for the store: JSON-safe, without server-managed columns."""
        return self.model_dump(mode="json", exclude={"created_at", "updated_at"})


class AdditionalExpense(BaseModel):
    """An ad-hoc expense charged on top of the bill (repairs, cleaning...)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[UUID] = Field(
        default=None,
        description="Store identity; None means not yet persisted"
    )
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)
    date: date

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v: Any) -> Any:
        return _blank_id_to_unassigned(v)

    @property
    def is_assigned(self) -> bool:
        return self.id is not None


class BillPayment(BaseModel):
    """A payment received against the bill."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[UUID] = Field(
        default=None,
        description="Store identity; None means not yet persisted"
    )
    amount: Decimal = Field(..., ge=0)
    payment_date: date
    payment_type: PaymentType = PaymentType.CASH
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v: Any) -> Any:
        return _blank_id_to_unassigned(v)

    @property
    def is_assigned(self) -> bool:
        return self.id is not None


class PreviousReadings(BaseModel):
    """Final meter readings of the preceding period (carry-forward)."""

    electricity_final: int = Field(default=0, ge=0)
    motor_final: int = Field(default=0, ge=0)

    @classmethod
    def from_bill(cls, bill: Optional[MonthlyBill]) -> "PreviousReadings":
        if bill is None:
            return cls()
        return cls(
            electricity_final=bill.electricity_final_reading,
            motor_final=bill.motor_final_reading,
        )


# =============================================================================
# AGGREGATE
# =============================================================================

class ReconciliationOutcome(BaseModel):
    """Identities the store assigned (or kept) during a reconciled save."""

    bill_id: UUID
    expense_ids: list[UUID] = Field(default_factory=list)
    payment_ids: list[UUID] = Field(default_factory=list)
    success: bool = True


class BillAggregate(BaseModel):
    """
    A bill plus its full expense and payment lists for one month.

    This is the unit of caching and of reconciliation. ``bill`` is None
    for a month that has never been saved; ``previous_readings`` is derived
    from the preceding month and is never written back against this key.
    """

    tenant_id: int
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1)

    bill: Optional[MonthlyBill] = None
    expenses: list[AdditionalExpense] = Field(default_factory=list)
    payments: list[BillPayment] = Field(default_factory=list)
    previous_readings: PreviousReadings = Field(default_factory=PreviousReadings)

    @model_validator(mode="after")
    def validate_bill_key(self) -> "BillAggregate":
        """A bill can only live under its own (tenant, month, year)."""
        if self.bill is not None and self.bill.key != self.key:
            raise ValueError(
                f"Bill belongs to {self.bill.key}, not to {self.key}"
            )
        return self

    @classmethod
    def empty(
        cls,
        key: AggregateKey,
        previous_readings: Optional[PreviousReadings] = None,
    ) -> "BillAggregate":
        """Aggregate for a month with no bill row yet."""
        return cls(
            tenant_id=key.tenant_id,
            month=key.month,
            year=key.year,
            previous_readings=previous_readings or PreviousReadings(),
        )

    @property
    def key(self) -> AggregateKey:
        return AggregateKey(tenant_id=self.tenant_id, month=self.month, year=self.year)

    @property
    def has_unassigned_children(self) -> bool:
        return any(not e.is_assigned for e in self.expenses) or any(
            not p.is_assigned for p in self.payments
        )

    @property
    def is_reconciled(self) -> bool:
        """True when every part of the aggregate carries a store identity."""
        return (
            self.bill is not None
            and self.bill.id is not None
            and not self.has_unassigned_children
        )

    def with_identities(self, outcome: ReconciliationOutcome) -> "BillAggregate":
        """
        Absorb store-assigned identities into a copy of this aggregate.

        Identities are matched by position: the store returns them in the
        order the children were sent.
        """
        if self.bill is None:
            raise ValueError("Cannot absorb identities into an aggregate without a bill")
        if len(outcome.expense_ids) != len(self.expenses):
            raise ValueError(
                f"Expected {len(self.expenses)} expense ids, got {len(outcome.expense_ids)}"
            )
        if len(outcome.payment_ids) != len(self.payments):
            raise ValueError(
                f"Expected {len(self.payments)} payment ids, got {len(outcome.payment_ids)}"
            )

        return self.model_copy(
            update={
                "bill": self.bill.model_copy(update={"id": outcome.bill_id}),
                "expenses": [
                    expense.model_copy(update={"id": expense_id})
                    for expense, expense_id in zip(self.expenses, outcome.expense_ids)
                ],
                "payments": [
                    payment.model_copy(update={"id": payment_id})
                    for payment, payment_id in zip(self.payments, outcome.payment_ids)
                ],
            }
        )

    def draft_bill(
        self,
        monthly_rent: Decimal,
        multiplier: Decimal = Decimal("9"),
        number_of_people: int = 2,
    ) -> MonthlyBill:
        """
        Start a bill for a never-populated month.

        Both meters start (and end) at last month's final reading, so an
        untouched draft charges nothing for utilities.
        """
        electricity = self.previous_readings.electricity_final
        motor = self.previous_readings.motor_final
        return MonthlyBill(
            tenant_id=self.tenant_id,
            month=self.month,
            year=self.year,
            rent_amount=monthly_rent,
            electricity_initial_reading=electricity,
            electricity_final_reading=electricity,
            electricity_multiplier=multiplier,
            motor_initial_reading=motor,
            motor_final_reading=motor,
            motor_multiplier=multiplier,
            motor_number_of_people=number_of_people,
        )

    def with_recalculated_totals(self) -> "BillAggregate":
        """Recompute the bill's sub-totals and running totals."""
        if self.bill is None:
            raise ValueError("Cannot compute totals without a bill")
        bill = self.bill

        electricity_amount = Decimal("0")
        if bill.electricity_enabled:
            units = bill.electricity_final_reading - bill.electricity_initial_reading
            electricity_amount = (units * bill.electricity_multiplier).quantize(
                CENTS, rounding=ROUND_HALF_UP
            )

        motor_amount = Decimal("0")
        if bill.motor_enabled:
            units = bill.motor_final_reading - bill.motor_initial_reading
            motor_amount = (
                units * bill.motor_multiplier / bill.motor_number_of_people
            ).quantize(CENTS, rounding=ROUND_HALF_UP)

        total = bill.rent_amount + electricity_amount + motor_amount
        if bill.water_enabled:
            total += bill.water_amount
        if bill.maintenance_enabled:
            total += bill.maintenance_amount
        total += sum((e.amount for e in self.expenses), Decimal("0"))

        total_payments = sum((p.amount for p in self.payments), Decimal("0"))

        return self.model_copy(
            update={
                "bill": bill.model_copy(
                    update={
                        "electricity_amount": electricity_amount,
                        "motor_amount": motor_amount,
                        "total_amount": total,
                        "total_payments": total_payments,
                        "pending_amount": total - total_payments,
                    }
                )
            }
        )


class DisplayedAggregate(BaseModel):
    """What the presentation layer gets back from a display call."""

    aggregate: BillAggregate
    stale: bool = Field(
        default=False,
        description="Served from a cache entry older than its TTL"
    )
    from_cache: bool = Field(
        default=False,
        description="Served without touching the store"
    )
