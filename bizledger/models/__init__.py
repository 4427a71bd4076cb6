"""
Data Models Package

This package contains all Pydantic models used in BizLedger.
All data flowing through the system must conform to these schemas.
"""

from bizledger.models.expense import (
    CategorySummary,
    DayGroup,
    ExpenseRecord,
    ExternalExpense,
    GroupedExpenseView,
    KnowledgeEntry,
    ManualExpenseEntry,
    ReceiptConfidence,
    ReceiptExtraction,
    ReceiptOutcome,
    RelationalExpense,
    SourceOrigin,
    ValidationIssue,
    ValidationResult,
    ViewMode,
    to_cents,
)
from bizledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "CategorySummary",
    "DayGroup",
    "ExpenseRecord",
    "ExternalExpense",
    "GroupedExpenseView",
    "KnowledgeEntry",
    "ManualExpenseEntry",
    "ReceiptConfidence",
    "ReceiptExtraction",
    "ReceiptOutcome",
    "RelationalExpense",
    "SourceOrigin",
    "ValidationIssue",
    "ValidationResult",
    "ViewMode",
    "to_cents",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
