"""
Store Services Package

Provides the abstract store contract the sync engine depends on, and an
in-memory implementation of it for tests and local development.
"""

from billsync.services.store.interface import (
    AccessDeniedError,
    AuditStorageInterface,
    BillStoreInterface,
    MalformedPayloadError,
    NotFoundError,
    ReconciliationError,
    StorageError,
    StoreUnavailableError,
    UnsupportedOperationError,
)
from billsync.services.store.memory import (
    InMemoryAuditStorage,
    InMemoryBillStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BillStoreInterface",
    # Exceptions
    "AccessDeniedError",
    "MalformedPayloadError",
    "NotFoundError",
    "ReconciliationError",
    "StorageError",
    "StoreUnavailableError",
    "UnsupportedOperationError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBillStore",
]
