"""
Data Models Package

This package contains all Pydantic models used by the bill sync engine.
All data crossing the store boundary must conform to these schemas.
"""

from billsync.models.bill import (
    AdditionalExpense,
    AggregateKey,
    BillAggregate,
    BillPayment,
    DisplayedAggregate,
    MonthlyBill,
    PaymentType,
    PreviousReadings,
    ReconciliationOutcome,
)
from billsync.models.reconciliation import ChildPlan, plan_children
from billsync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Bill models
    "AdditionalExpense",
    "AggregateKey",
    "BillAggregate",
    "BillPayment",
    "DisplayedAggregate",
    "MonthlyBill",
    "PaymentType",
    "PreviousReadings",
    "ReconciliationOutcome",
    # Reconciliation
    "ChildPlan",
    "plan_children",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
