"""
Reconciliation Writer

Persists one BillAggregate as a single logical transaction: upsert the bill,
then make the stored expenses and payments equal to the incoming lists.

The incoming lists are authoritative. Children without an identity are
inserted, children with one are overwritten, and stored children the lists no
longer mention are deleted. The store does this atomically; the writer only
shapes the payload, checks the answer, and makes retries safe.

DESIGN DECISION: One request id per save, reused by every retry. An attempt
abandoned on timeout may still have committed; the store recognises the id
and replays the first outcome instead of inserting the new children twice.
"""

from typing import Any, Optional
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError

from billsync.models.bill import BillAggregate, ReconciliationOutcome
from billsync.models.reconciliation import plan_children
from billsync.services.store import BillStoreInterface, ReconciliationError
from billsync.sync.retry import RetryingExecutor


logger = structlog.get_logger(__name__)


class ReconciliationWriter:
    """Writes aggregates through the store's reconciling write."""

    def __init__(
        self,
        store: BillStoreInterface,
        executor: RetryingExecutor,
        requester_id: str,
    ):
        self._store = store
        self._executor = executor
        self._requester_id = requester_id

    async def save(
        self,
        aggregate: BillAggregate,
        previous: Optional[BillAggregate] = None,
    ) -> ReconciliationOutcome:
        """
        Reconcile `aggregate` into the store.

        Args:
            aggregate: The full desired state of the month
            previous: Last known stored state, used only to log the expected change

        Returns:
            ReconciliationOutcome with ids in the order the children were sent

        Raises:
            ValueError: The aggregate has no bill
            ReconciliationError: The store refused the write or answered inconsistently
            RetryExhaustedError: The store could not be reached
        """
        if aggregate.bill is None:
            raise ValueError(f"Nothing to save for {aggregate.key}: the aggregate has no bill")

        bill_fields = aggregate.bill.to_store_fields()
        expenses = [e.model_dump(mode="json") for e in aggregate.expenses]
        payments = [p.model_dump(mode="json") for p in aggregate.payments]
        request_id = uuid4()

        self._log_plan(aggregate, previous, request_id)

        raw = await self._executor.run(
            lambda: self._store.reconcile_write(
                bill_fields,
                expenses,
                payments,
                self._requester_id,
                request_id=request_id,
            ),
            "reconcile_write",
            tenant_id=aggregate.tenant_id,
            month=aggregate.month,
            year=aggregate.year,
        )

        outcome = self._validate_outcome(aggregate, raw)
        logger.info(
            "save_reconciled",
            key=aggregate.key.cache_key,
            bill_id=str(outcome.bill_id),
            request_id=str(request_id),
            expenses=len(outcome.expense_ids),
            payments=len(outcome.payment_ids),
        )
        return outcome

    def _log_plan(
        self,
        aggregate: BillAggregate,
        previous: Optional[BillAggregate],
        request_id: UUID,
    ) -> None:
        stored_expenses = [e.id for e in previous.expenses if e.id] if previous else []
        stored_payments = [p.id for p in previous.payments if p.id] if previous else []

        expense_plan = plan_children(stored_expenses, [e.id for e in aggregate.expenses])
        payment_plan = plan_children(stored_payments, [p.id for p in aggregate.payments])

        logger.info(
            "save_planned",
            key=aggregate.key.cache_key,
            request_id=str(request_id),
            expenses=expense_plan.summary(),
            payments=payment_plan.summary(),
        )

    def _validate_outcome(
        self,
        aggregate: BillAggregate,
        raw: Any,
    ) -> ReconciliationOutcome:
        if not isinstance(raw, dict):
            raise ReconciliationError(
                f"Reconciling write returned {type(raw).__name__}, expected an object"
            )
        if not raw.get("success", False):
            raise ReconciliationError(f"Store reported an unsuccessful save for {aggregate.key}")

        try:
            outcome = ReconciliationOutcome.model_validate(raw)
        except ValidationError as e:
            raise ReconciliationError(f"Reconciling write returned a malformed result: {e}")

        if len(outcome.expense_ids) != len(aggregate.expenses):
            raise ReconciliationError(
                f"Sent {len(aggregate.expenses)} expenses, "
                f"store returned {len(outcome.expense_ids)} ids"
            )
        if len(outcome.payment_ids) != len(aggregate.payments):
            raise ReconciliationError(
                f"Sent {len(aggregate.payments)} payments, "
                f"store returned {len(outcome.payment_ids)} ids"
            )
        return outcome
