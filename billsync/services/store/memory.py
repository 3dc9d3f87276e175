"""
In-Memory Store Implementation

DESIGN DECISION: The engine needs a store that joins and writes atomically.
This implementation keeps rows as the JSON-like dicts a remote procedure
would return, and makes every reconciling write all-or-nothing by staging
changes on copies and swapping them in only when every step succeeded.

TRADEOFFS:
- Single process only (fine for tests and local development)
- No persistence across restarts
- Ownership is a plain tenant -> owner map, standing in for row-level security
"""

import asyncio
import copy
from collections import OrderedDict, defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from billsync.models.audit import AuditEvent
from billsync.models.bill import AggregateKey
from billsync.models.reconciliation import plan_children
from billsync.services.store.interface import (
    AccessDeniedError,
    AuditStorageInterface,
    BillStoreInterface,
    NotFoundError,
    ReconciliationError,
    UnsupportedOperationError,
)


BillRowKey = tuple[int, int, int]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_child_id(raw: Any) -> Optional[UUID]:
    """Children arrive with null, "null", "" or a UUID string as id."""
    if raw is None:
        return None
    if isinstance(raw, UUID):
        return raw
    text = str(raw).strip()
    if text.lower() in ("", "null", "none"):
        return None
    try:
        return UUID(text)
    except ValueError:
        raise ReconciliationError(f"Invalid child identity: {raw!r}")


class InMemoryBillStore(BillStoreInterface):
    """
    In-memory implementation of the bill store.

    Bills are keyed by (tenant, month, year); expenses and payments are
    ordered lists per bill id, in the order the last write sent them.
    """

    def __init__(
        self,
        combined_read_supported: bool = True,
        max_replays: int = 1024,
    ):
        self.combined_read_supported = combined_read_supported

        self._owners: dict[int, str] = {}
        self._bills: dict[BillRowKey, dict[str, Any]] = {}
        self._expenses: dict[str, list[dict[str, Any]]] = {}
        self._payments: dict[str, list[dict[str, Any]]] = {}
        # Outcomes of the most recent request ids, oldest first
        self._replays: OrderedDict[UUID, dict[str, Any]] = OrderedDict()
        self._max_replays = max_replays
        self._failures: dict[str, deque[Exception]] = defaultdict(deque)
        self._write_lock = asyncio.Lock()

        # (operation, tenant_id or bill_id, month, year) for every call
        self.calls: list[tuple] = []

    # -------------------------------------------------------------------------
    # Test and setup helpers
    # -------------------------------------------------------------------------

    def add_tenant(self, tenant_id: int, owner_id: str) -> None:
        """Register a tenant as belonging to a requester."""
        self._owners[tenant_id] = owner_id

    def inject_failure(self, operation: str, error: Exception, times: int = 1) -> None:
        """Make the next `times` calls of `operation` raise `error`."""
        for _ in range(times):
            self._failures[operation].append(error)

    def calls_to(self, operation: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == operation]

    def bill_row(self, tenant_id: int, month: int, year: int) -> Optional[dict[str, Any]]:
        row = self._bills.get((tenant_id, month, year))
        return copy.deepcopy(row) if row else None

    def child_ids(self, bill_id: UUID, kind: str) -> list[UUID]:
        """Stored identities of a bill's 'expenses' or 'payments'."""
        table = self._expenses if kind == "expenses" else self._payments
        return [UUID(row["id"]) for row in table.get(str(bill_id), [])]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _raise_injected(self, operation: str) -> None:
        queue = self._failures.get(operation)
        if queue:
            raise queue.popleft()

    def _check_access(self, tenant_id: int, requester_id: str) -> None:
        owner = self._owners.get(tenant_id)
        if owner is None:
            raise NotFoundError(f"Tenant not found: {tenant_id}")
        if owner != requester_id:
            raise AccessDeniedError(f"Tenant {tenant_id} does not belong to this user")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def combined_read(
        self,
        tenant_id: int,
        month: int,
        year: int,
        requester_id: str,
    ) -> dict[str, Any]:
        """Bill, children and carry-forward readings in one call."""
        self.calls.append(("combined_read", tenant_id, month, year))
        self._raise_injected("combined_read")
        if not self.combined_read_supported:
            raise UnsupportedOperationError("combined_read is not available on this store")
        self._check_access(tenant_id, requester_id)

        key = AggregateKey(tenant_id=tenant_id, month=month, year=year)
        previous_row = None
        if key.has_previous:
            previous = key.previous()
            previous_row = self._bills.get((previous.tenant_id, previous.month, previous.year))
        previous_readings = {
            "electricity_final": (previous_row or {}).get("electricity_final_reading") or 0,
            "motor_final": (previous_row or {}).get("motor_final_reading") or 0,
        }

        row = self._bills.get((tenant_id, month, year))
        if row is None:
            return {
                "bill": None,
                "expenses": [],
                "payments": [],
                "previous_readings": previous_readings,
            }

        return copy.deepcopy({
            "bill": row,
            "expenses": self._expenses.get(row["id"], []),
            "payments": self._payments.get(row["id"], []),
            "previous_readings": previous_readings,
        })

    async def get_bill(
        self,
        tenant_id: int,
        month: int,
        year: int,
        requester_id: str,
    ) -> Optional[dict[str, Any]]:
        """Read one bill row."""
        self.calls.append(("get_bill", tenant_id, month, year))
        self._raise_injected("get_bill")
        self._check_access(tenant_id, requester_id)
        return self.bill_row(tenant_id, month, year)

    async def get_expenses(self, bill_id: UUID) -> list[dict[str, Any]]:
        """Read the expense rows of a bill."""
        self.calls.append(("get_expenses", str(bill_id)))
        self._raise_injected("get_expenses")
        return copy.deepcopy(self._expenses.get(str(bill_id), []))

    async def get_payments(self, bill_id: UUID) -> list[dict[str, Any]]:
        """Read the payment rows of a bill."""
        self.calls.append(("get_payments", str(bill_id)))
        self._raise_injected("get_payments")
        return copy.deepcopy(self._payments.get(str(bill_id), []))

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _reconcile_children(
        self,
        stored_rows: list[dict[str, Any]],
        incoming: list[dict[str, Any]],
        bill_id: str,
        label: str,
    ) -> tuple[list[dict[str, Any]], list[str]]:
        """Apply one child collection's set difference to copies of its rows."""
        incoming_ids = [_parse_child_id(child.get("id")) for child in incoming]
        stored_by_id = {UUID(row["id"]): row for row in stored_rows}

        plan = plan_children(stored_by_id.keys(), incoming_ids)
        if not plan.is_consistent:
            raise ReconciliationError(
                f"{label} refer to rows this bill does not own: "
                f"unknown={[str(i) for i in plan.unknown]}, "
                f"duplicated={[str(i) for i in plan.duplicates]}"
            )

        new_rows = []
        result_ids = []
        for child, child_id in zip(incoming, incoming_ids):
            row = dict(child)
            row["monthly_bill_id"] = bill_id
            if child_id is None:
                row["id"] = str(uuid4())
                row["created_at"] = _now_iso()
            else:
                row["id"] = str(child_id)
                row["created_at"] = stored_by_id[child_id].get("created_at")
            new_rows.append(row)
            result_ids.append(row["id"])

        # Rows in plan.deletes are dropped by not carrying them over.
        return new_rows, result_ids

    async def reconcile_write(
        self,
        bill_fields: dict[str, Any],
        expenses: list[dict[str, Any]],
        payments: list[dict[str, Any]],
        requester_id: str,
        request_id: Optional[UUID] = None,
    ) -> dict[str, Any]:
        """Upsert the bill and replace its children, all-or-nothing."""
        async with self._write_lock:
            if request_id is not None and request_id in self._replays:
                self._replays.move_to_end(request_id)
                return copy.deepcopy(self._replays[request_id])

            self.calls.append((
                "reconcile_write",
                bill_fields.get("tenant_id"),
                bill_fields.get("month"),
                bill_fields.get("year"),
            ))
            self._raise_injected("reconcile_write")

            try:
                key = (
                    int(bill_fields["tenant_id"]),
                    int(bill_fields["month"]),
                    int(bill_fields["year"]),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ReconciliationError(f"Bill is missing its key: {e}")
            if not 1 <= key[1] <= 12:
                raise ReconciliationError(f"Month out of range: {key[1]}")
            self._check_access(key[0], requester_id)

            # Stage the bill row
            existing = self._bills.get(key)
            bill_row = {k: v for k, v in bill_fields.items() if k != "id"}
            if existing is None:
                bill_row["id"] = str(uuid4())
                bill_row["created_at"] = _now_iso()
            else:
                bill_row["id"] = existing["id"]
                bill_row["created_at"] = existing.get("created_at")
            bill_row["user_id"] = requester_id
            bill_row["updated_at"] = _now_iso()
            bill_id = bill_row["id"]

            # Stage the children; any error leaves the committed state untouched
            new_expenses, expense_ids = self._reconcile_children(
                self._expenses.get(bill_id, []), expenses, bill_id, "Expenses"
            )
            new_payments, payment_ids = self._reconcile_children(
                self._payments.get(bill_id, []), payments, bill_id, "Payments"
            )

            # Commit
            self._bills[key] = bill_row
            self._expenses[bill_id] = new_expenses
            self._payments[bill_id] = new_payments

            result = {
                "bill_id": bill_id,
                "expense_ids": expense_ids,
                "payment_ids": payment_ids,
                "success": True,
            }
            if request_id is not None:
                self._replays[request_id] = copy.deepcopy(result)
                while len(self._replays) > self._max_replays:
                    self._replays.popitem(last=False)
            return result


class InMemoryAuditStorage(AuditStorageInterface):
    """
    In-memory implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
