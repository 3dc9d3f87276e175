"""
Audit Logger

DESIGN DECISION: Every load, save and invalidation is logged.
This provides:
1. Complete traceability of what the store was asked to do
2. Debugging capability when a save is rolled back
3. A record of when cached data was discarded

The audit logger:
- Is async to not block the display/save flow
- Gracefully handles failures (a broken audit sink never fails a save)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from billsync.models.audit import AuditEvent, AuditEventBuilder
from billsync.models.bill import AggregateKey
from billsync.services.store import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_aggregate_loaded(
        self,
        key: AggregateKey,
        source: str,
        has_bill: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a month read from the store."""
        await self.log(AuditEventBuilder.aggregate_loaded(
            key=key,
            source=source,
            has_bill=has_bill,
            correlation_id=correlation_id,
        ))

    async def log_combined_read_fallback(
        self,
        key: AggregateKey,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a switch to the separate-reads path."""
        await self.log(AuditEventBuilder.combined_read_fallback(
            key=key,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_load_failed(
        self,
        key: AggregateKey,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.load_failed(
            key=key,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_preload_failed(
        self,
        key: AggregateKey,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.preload_failed(
            key=key,
            error_message=error_message,
        ))

    async def log_optimistic_write(
        self,
        key: AggregateKey,
        expense_count: int,
        payment_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log unsaved changes entering the cache."""
        await self.log(AuditEventBuilder.optimistic_write(
            key=key,
            expense_count=expense_count,
            payment_count=payment_count,
            correlation_id=correlation_id,
        ))

    async def log_save_reconciled(
        self,
        key: AggregateKey,
        bill_id: UUID,
        expense_count: int,
        payment_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a save the store accepted."""
        await self.log(AuditEventBuilder.save_reconciled(
            key=key,
            bill_id=bill_id,
            expense_count=expense_count,
            payment_count=payment_count,
            correlation_id=correlation_id,
        ))

    async def log_save_failed(
        self,
        key: AggregateKey,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.save_failed(
            key=key,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_cache_invalidated(
        self,
        key: AggregateKey,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cache_invalidated(
            key=key,
            reason=reason,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a save).
    Pass it through all subsequent operations.
    """
    return uuid4()
