"""Services package."""

from billsync.services.store import (
    AccessDeniedError,
    AuditStorageInterface,
    BillStoreInterface,
    InMemoryAuditStorage,
    InMemoryBillStore,
    MalformedPayloadError,
    NotFoundError,
    ReconciliationError,
    StorageError,
    StoreUnavailableError,
    UnsupportedOperationError,
)

__all__ = [
    # Store services
    "AccessDeniedError",
    "AuditStorageInterface",
    "BillStoreInterface",
    "InMemoryAuditStorage",
    "InMemoryBillStore",
    "MalformedPayloadError",
    "NotFoundError",
    "ReconciliationError",
    "StorageError",
    "StoreUnavailableError",
    "UnsupportedOperationError",
]
