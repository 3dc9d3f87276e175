"""
Audit Models for Bill Sync

Every load, save and invalidation the engine performs is recorded.
This provides:
1. Traceability of what the store was asked to do and when
2. Debugging information when a save fails or a fallback kicks in
3. A way to reconstruct why a cached month was dropped

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from billsync.models.bill import AggregateKey


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each step of display/save has its own event type.
    """
    # Loading
    AGGREGATE_LOADED = "aggregate_loaded"
    COMBINED_READ_FALLBACK = "combined_read_fallback"
    LOAD_FAILED = "load_failed"
    PRELOAD_FAILED = "preload_failed"

    # Saving
    OPTIMISTIC_WRITE = "optimistic_write"
    SAVE_RECONCILED = "save_reconciled"
    SAVE_FAILED = "save_failed"

    # Cache
    CACHE_INVALIDATED = "cache_invalidated"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - which month is this about?
    tenant_id: Optional[int] = None
    month: Optional[int] = None
    year: Optional[int] = None
    entity_id: Optional[UUID] = Field(
        default=None,
        description="Store identity of the bill, when known"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one save)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "tenant_id": self.tenant_id,
            "month": self.month,
            "year": self.year,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


def _key_fields(key: AggregateKey) -> dict[str, int]:
    return {"tenant_id": key.tenant_id, "month": key.month, "year": key.year}


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.aggregate_loaded(key, "combined", correlation_id)
        event = AuditEventBuilder.save_failed(key, str(exc), correlation_id)
    """

    @staticmethod
    def aggregate_loaded(
        key: AggregateKey,
        source: str,
        has_bill: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AGGREGATE_LOADED,
            correlation_id=correlation_id,
            description=f"Loaded {key} via {source} read",
            details={"source": source, "has_bill": has_bill},
            **_key_fields(key),
        )

    @staticmethod
    def combined_read_fallback(
        key: AggregateKey,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMBINED_READ_FALLBACK,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Combined read unavailable for {key}, using separate reads",
            error_message=reason,
            **_key_fields(key),
        )

    @staticmethod
    def load_failed(
        key: AggregateKey,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAD_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Could not load {key}",
            error_message=error_message,
            is_user_action=True,
            **_key_fields(key),
        )

    @staticmethod
    def preload_failed(
        key: AggregateKey,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRELOAD_FAILED,
            severity=AuditSeverity.WARNING,
            description=f"Background preload of {key} failed",
            error_message=error_message,
            **_key_fields(key),
        )

    @staticmethod
    def optimistic_write(
        key: AggregateKey,
        expense_count: int,
        payment_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPTIMISTIC_WRITE,
            correlation_id=correlation_id,
            description=f"Cached unsaved changes for {key}",
            details={
                "expense_count": expense_count,
                "payment_count": payment_count,
            },
            is_user_action=True,
            **_key_fields(key),
        )

    @staticmethod
    def save_reconciled(
        key: AggregateKey,
        bill_id: UUID,
        expense_count: int,
        payment_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_RECONCILED,
            entity_id=bill_id,
            correlation_id=correlation_id,
            description=f"Saved {key}",
            details={
                "expense_count": expense_count,
                "payment_count": payment_count,
            },
            **_key_fields(key),
        )

    @staticmethod
    def save_failed(
        key: AggregateKey,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Save of {key} failed, cached changes discarded",
            error_message=error_message,
            is_user_action=True,
            **_key_fields(key),
        )

    @staticmethod
    def cache_invalidated(
        key: AggregateKey,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_INVALIDATED,
            correlation_id=correlation_id,
            description=f"Dropped cached {key}",
            details={"reason": reason},
            **_key_fields(key),
        )
