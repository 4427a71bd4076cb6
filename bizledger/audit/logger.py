"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of reconciliation passes and writes
2. Debugging capability for the date and duplicate heuristics
3. A record of which categories were learned, and when

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from bizledger.models.audit import AuditEvent, AuditEventBuilder
from bizledger.services.storage import AuditStorageInterface


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
    2. An AuditStorageInterface backend, when one is configured
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
        self._logger = structlog.get_logger("bizledger.audit")

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

    async def log_reconciliation_completed(
        self,
        user_id: str,
        record_count: int,
        group_count: int,
        removed_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.reconciliation_completed(
            user_id=user_id,
            record_count=record_count,
            group_count=group_count,
            removed_count=removed_count,
            correlation_id=correlation_id,
        ))

    async def log_source_fetch_failed(
        self,
        user_id: str,
        source: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a data source that contributed nothing to this pass."""
        await self.log(AuditEventBuilder.source_fetch_failed(
            user_id=user_id,
            source=source,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_duplicates_removed(
        self,
        user_id: str,
        dropped_ids: list[str],
        ambiguous_groups: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.duplicates_removed(
            user_id=user_id,
            dropped_ids=dropped_ids,
            ambiguous_groups=ambiguous_groups,
            correlation_id=correlation_id,
        ))

    async def log_category_created(
        self,
        user_id: str,
        category: str,
        raw_label: str,
    ) -> None:
        await self.log(AuditEventBuilder.category_created(
            user_id=user_id,
            category=category,
            raw_label=raw_label,
        ))

    async def log_category_persistence_failed(
        self,
        user_id: str,
        category: str,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.category_persistence_failed(
            user_id=user_id,
            category=category,
            error_message=error_message,
        ))

    async def log_receipt_uploaded(
        self,
        user_id: str,
        filename: str,
        file_size: int,
        correlation_id: UUID,
    ) -> None:
        """Log receipt upload event."""
        await self.log(AuditEventBuilder.receipt_uploaded(
            user_id=user_id,
            filename=filename,
            file_size=file_size,
            correlation_id=correlation_id,
        ))

    async def log_receipt_accepted(
        self,
        user_id: str,
        category: str,
        amount: str,
        confidence: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_accepted(
            user_id=user_id,
            category=category,
            amount=amount,
            confidence=confidence,
            correlation_id=correlation_id,
        ))

    async def log_receipt_rejected(
        self,
        user_id: str,
        missing_fields: list[str],
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_rejected(
            user_id=user_id,
            missing_fields=missing_fields,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        user_id: str,
        subject: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            user_id=user_id,
            subject=subject,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_expense_saved(
        self,
        user_id: str,
        expense_id: str,
        amount: str,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log expense save."""
        await self.log(AuditEventBuilder.expense_saved(
            user_id=user_id,
            expense_id=expense_id,
            amount=amount,
            category=category,
            correlation_id=correlation_id,
        ))

    async def log_expense_updated(
        self,
        user_id: str,
        expense_id: str,
        amount: str,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_updated(
            user_id=user_id,
            expense_id=expense_id,
            amount=amount,
            category=category,
            correlation_id=correlation_id,
        ))

    async def log_expense_deleted(
        self,
        user_id: str,
        expense_id: str,
        source: str,
    ) -> None:
        await self.log(AuditEventBuilder.expense_deleted(
            user_id=user_id,
            expense_id=expense_id,
            source=source,
        ))

    async def log_expense_delete_failed(
        self,
        user_id: str,
        expense_id: str,
        source: str,
        error_message: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_delete_failed(
            user_id=user_id,
            expense_id=expense_id,
            source=source,
            error_message=error_message,
        ))

    async def log_business_context_updated(
        self,
        user_id: str,
        entry_count: int,
        context_length: int,
    ) -> None:
        await self.log(AuditEventBuilder.business_context_updated(
            user_id=user_id,
            entry_count=entry_count,
            context_length=context_length,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a dashboard refresh).
    Pass it through all subsequent operations.
    """
    return uuid4()
