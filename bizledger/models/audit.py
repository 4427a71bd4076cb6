"""
Audit Models for BizLedger

Every significant action in the system is logged for audit purposes:
reconciliation passes, source failures, learned categories, receipt
uploads and expense writes.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Reconciliation
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    SOURCE_FETCH_FAILED = "source_fetch_failed"
    DUPLICATES_REMOVED = "duplicates_removed"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_PERSISTENCE_FAILED = "category_persistence_failed"

    # Receipts
    RECEIPT_UPLOADED = "receipt_uploaded"
    RECEIPT_ACCEPTED = "receipt_accepted"
    RECEIPT_REJECTED = "receipt_rejected"

    # Persistence
    EXPENSE_SAVED = "expense_saved"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSE_DELETE_FAILED = "expense_delete_failed"
    VALIDATION_FAILED = "validation_failed"
    BUSINESS_CONTEXT_UPDATED = "business_context_updated"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


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

    Entity identifiers are strings because external-service records carry
    opaque, non-UUID identifiers.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
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

    # Context - what entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner whose data the event touched"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'category', 'receipt')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one refresh)"
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

    # Error information (if applicable)
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
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.source_fetch_failed(user_id, "external", err, cid)
        event = AuditEventBuilder.expense_saved(user_id, expense_id, "12.50", cid)
    """

    @staticmethod
    def reconciliation_completed(
        user_id: str,
        record_count: int,
        group_count: int,
        removed_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            user_id=user_id,
            entity_type="view",
            correlation_id=correlation_id,
            description=(
                f"Reconciled {record_count} expenses into {group_count} days"
            ),
            details={
                "record_count": record_count,
                "group_count": group_count,
                "removed_count": removed_count,
            },
        )

    @staticmethod
    def source_fetch_failed(
        user_id: str,
        source: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SOURCE_FETCH_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="source",
            entity_id=source,
            correlation_id=correlation_id,
            description=f"Could not load expenses from {source}; showing partial results",
            error_message=error_message,
            details={"source": source},
        )

    @staticmethod
    def duplicates_removed(
        user_id: str,
        dropped_ids: list[str],
        ambiguous_groups: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATES_REMOVED,
            user_id=user_id,
            entity_type="expense",
            correlation_id=correlation_id,
            description=f"Removed {len(dropped_ids)} duplicate expenses",
            details={
                "dropped_ids": dropped_ids,
                "ambiguous_groups": ambiguous_groups,
            },
        )

    @staticmethod
    def category_created(
        user_id: str,
        category: str,
        raw_label: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_CREATED,
            user_id=user_id,
            entity_type="category",
            entity_id=category,
            description=f"New category learned: {category}",
            details={"raw_label": raw_label},
        )

    @staticmethod
    def category_persistence_failed(
        user_id: str,
        category: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_PERSISTENCE_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="category",
            entity_id=category,
            description=f"Could not save new category: {category}",
            error_message=error_message,
        )

    @staticmethod
    def receipt_uploaded(
        user_id: str,
        filename: str,
        file_size: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_UPLOADED,
            user_id=user_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"Receipt uploaded: {filename}",
            details={
                "filename": filename,
                "file_size_bytes": file_size,
            },
            is_user_action=True,
        )

    @staticmethod
    def receipt_accepted(
        user_id: str,
        category: str,
        amount: str,
        confidence: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_ACCEPTED,
            user_id=user_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"Receipt processed: {category} ${amount}",
            details={
                "category": category,
                "amount": amount,
                "confidence": confidence,
            },
        )

    @staticmethod
    def receipt_rejected(
        user_id: str,
        missing_fields: list[str],
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"Receipt rejected: {reason}",
            details={"missing_fields": missing_fields},
        )

    @staticmethod
    def validation_failed(
        user_id: str,
        subject: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=subject,
            correlation_id=correlation_id,
            description=f"{subject.replace('_', ' ').capitalize()} failed validation with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def expense_saved(
        user_id: str,
        expense_id: str,
        amount: str,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_SAVED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense saved: {category} ${amount}",
            details={
                "amount": amount,
                "category": category,
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_updated(
        user_id: str,
        expense_id: str,
        amount: str,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense updated: {category} ${amount}",
            details={
                "amount": amount,
                "category": category,
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_deleted(
        user_id: str,
        expense_id: str,
        source: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            description=f"Expense deleted from {source}",
            details={"source": source},
            is_user_action=True,
        )

    @staticmethod
    def expense_delete_failed(
        user_id: str,
        expense_id: str,
        source: str,
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETE_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            description=f"Could not delete expense from {source}",
            error_message=error_message,
            details={"source": source},
        )

    @staticmethod
    def business_context_updated(
        user_id: str,
        entry_count: int,
        context_length: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUSINESS_CONTEXT_UPDATED,
            user_id=user_id,
            entity_type="business_context",
            description=f"Business context rebuilt from {entry_count} entries",
            details={
                "entry_count": entry_count,
                "context_length": context_length,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
