"""
Abstract Store Interface

DESIGN DECISION: The remote store is an external collaborator. The engine
only relies on the contract below, which allows us to:
1. Run against any backend that can join and write atomically
2. Use in-memory storage for testing
3. Keep caching and reconciliation decoupled from the backend

Payloads cross this boundary as plain JSON-like dicts, the way a remote
procedure call returns them. The engine validates them into models.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from billsync.models.audit import AuditEvent


class BillStoreInterface(ABC):
    """
    Abstract interface for the remote bill store.

    Any storage implementation must implement these methods.
    """

    @abstractmethod
    async def combined_read(
        self,
        tenant_id: int,
        month: int,
        year: int,
        requester_id: str,
    ) -> dict[str, Any]:
        """
        Read a whole month in one round trip.

        Must be read-only and safe to call speculatively.

        Returns:
            {"bill": dict | None, "expenses": [dict], "payments": [dict],
             "previous_readings": {"electricity_final": int, "motor_final": int}}

        Raises:
            UnsupportedOperationError: If the backend has no combined read
            NotFoundError: If the tenant does not exist
            AccessDeniedError: If the tenant belongs to someone else
        """
        pass

    @abstractmethod
    async def reconcile_write(
        self,
        bill_fields: dict[str, Any],
        expenses: list[dict[str, Any]],
        payments: list[dict[str, Any]],
        requester_id: str,
        request_id: Optional[UUID] = None,
    ) -> dict[str, Any]:
        """
        Upsert a bill and replace its children, atomically.

        Children without an id are inserted, children with an id are
        overwritten, stored children missing from the lists are deleted.
        Calling again with the same request_id must not apply twice.

        Returns:
            {"bill_id": str, "expense_ids": [str], "payment_ids": [str],
             "success": bool}

        Raises:
            ReconciliationError: If the store rejects the write
        """
        pass

    @abstractmethod
    async def get_bill(
        self,
        tenant_id: int,
        month: int,
        year: int,
        requester_id: str,
    ) -> Optional[dict[str, Any]]:
        """
        Read one bill row.

        Returns:
            The row if the month has a bill, None otherwise

        Raises:
            NotFoundError / AccessDeniedError: For a foreign or missing tenant
        """
        pass

    @abstractmethod
    async def get_expenses(self, bill_id: UUID) -> list[dict[str, Any]]:
        """Read the expense rows of a bill, in stored order."""
        pass

    @abstractmethod
    async def get_payments(self, bill_id: UUID) -> list[dict[str, Any]]:
        """Read the payment rows of a bill, in stored order."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one save).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class AccessDeniedError(StorageError):
    """The entity exists but belongs to another user."""
    pass


class UnsupportedOperationError(StorageError):
    """The backend does not offer this operation."""
    pass


class StoreUnavailableError(StorageError):
    """Could not reach the storage backend."""
    pass


class MalformedPayloadError(StorageError):
    """The backend answered with data that does not fit the schema."""
    pass


class ReconciliationError(StorageError):
    """The backend rejected a reconciling write (e.g. a constraint violation)."""
    pass
