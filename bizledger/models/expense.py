"""
Core Data Models for BizLedger

These models define the strict schemas for all data flowing through the
reconciliation pipeline. They are designed to:
1. Enforce type safety at runtime
2. Carry the record origin as data, not as a string-shape guess
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: An expense record is a tagged union. The origin
(relational store vs external service) is decided once, at ingestion,
and every later decision (delete path, temporal correction) reads the
`source` tag instead of re-inspecting the identifier.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


CENT = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    """Quantize a Decimal to currency precision."""
    return value.quantize(CENT)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class SourceOrigin(str, Enum):
    """Where an expense record came from."""
    RELATIONAL = "relational"
    EXTERNAL = "external"


class ViewMode(str, Enum):
    """
    Dashboard history filters.

    WEEK runs Sunday through Saturday. CUSTOM shows a single selected day.
    """
    ALL = "all"
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    CUSTOM = "custom"


class ReceiptConfidence(str, Enum):
    """Confidence reported by the receipt extraction service."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return ("low", "medium", "high").index(self.value)


# =============================================================================
# EXPENSE RECORDS
# =============================================================================

class _ExpenseBase(BaseModel):
    """
    Fields shared by both record origins (canonical, post-unification).

    `effective_date` is the single calendar day used for grouping and
    filtering. `timestamp` is the instant used for intra-day ordering and
    duplicate detection; it is never rewritten by temporal correction.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    amount: Decimal = Field(
        ...,
        ge=0,
        description="Non-negative amount, currency-agnostic"
    )
    title: str = Field(
        default="",
        max_length=75,
        description="Short human-readable label"
    )
    description: str = Field(
        default="",
        max_length=150,
        description="Secondary free text"
    )
    category: str = Field(
        default="Other",
        description="Canonical category name"
    )
    original_category: Optional[str] = Field(
        default=None,
        description="Category label as received, before normalization"
    )

    # Temporal fields
    expense_date: Optional[date] = Field(
        default=None,
        description="Explicit calendar date, if the source supplied one"
    )
    created_at: Optional[datetime] = Field(
        default=None,
        description="Creation instant reported by the source (timezone-aware)"
    )
    effective_date: date = Field(
        ...,
        description="Calendar day the record is displayed under"
    )
    timestamp: datetime = Field(
        ...,
        description="Instant used for ordering and duplicate detection"
    )

    # Optional metadata
    vendor: Optional[str] = None
    receipt_url: Optional[str] = None
    status: Optional[str] = None

    @field_validator('amount')
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        return to_cents(v)

    @field_validator('timestamp', 'created_at')
    @classmethod
    def require_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive datetimes are taken to be UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def key(self) -> str:
        """Identifier as a string, comparable across origins."""
        return str(self.id)

    @property
    def origin(self) -> SourceOrigin:
        return SourceOrigin(self.source)

    @property
    def display_title(self) -> str:
        return self.title or "Untitled"


class RelationalExpense(_ExpenseBase):
    """A manually entered row from the relational store."""

    source: Literal["relational"] = "relational"
    id: UUID


class ExternalExpense(_ExpenseBase):
    """A record owned by the external receipt/classification service."""

    source: Literal["external"] = "external"
    id: str = Field(..., min_length=1)


ExpenseRecord = Annotated[
    Union[RelationalExpense, ExternalExpense],
    Field(discriminator="source"),
]


# =============================================================================
# GROUPED VIEW
# =============================================================================

class DayGroup(BaseModel):
    """All records displayed under one calendar day."""

    date_key: str = Field(
        ...,
        description="ISO calendar date (YYYY-MM-DD) in the viewer's timezone"
    )
    day: date
    records: list[ExpenseRecord] = Field(default_factory=list)
    total: Decimal = Field(default=Decimal("0.00"))
    expanded: bool = False

    @property
    def count(self) -> int:
        return len(self.records)


class GroupedExpenseView(BaseModel):
    """
    Output of one reconciliation pass.

    `groups` is ordered newest day first. `possible_duplicates` lists the
    identifier clusters the deduplication engine kept but could not
    disambiguate; the presentation layer should warn about them.
    """

    view_mode: ViewMode = ViewMode.ALL
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    groups: dict[str, DayGroup] = Field(default_factory=dict)
    total: Decimal = Field(default=Decimal("0.00"))
    count: int = 0
    possible_duplicates: list[list[str]] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def records(self) -> list:
        """All records in display order."""
        return [record for group in self.groups.values() for record in group.records]

    @property
    def is_empty(self) -> bool:
        return self.count == 0


class CategorySummary(BaseModel):
    """Spend per category for a period (the categories tab)."""

    category: str
    total: Decimal = Field(default=Decimal("0.00"))
    count: int = 0


# =============================================================================
# INPUT MODELS
# =============================================================================

class ReceiptExtraction(BaseModel):
    """
    Data returned by the receipt upload service.

    `amount` and `category` are optional here because their absence is a
    defined, recoverable failure reported by the validator.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = Field(default=None)
    category: Optional[str] = Field(default=None)
    title: str = Field(default="", max_length=75)
    description: str = Field(
        default="",
        max_length=200,
        description="Receipt descriptions get a larger cap before storage"
    )
    vendor: Optional[str] = None
    expense_date: Optional[date] = None
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    currency: Optional[str] = None
    confidence: ReceiptConfidence = ReceiptConfidence.MEDIUM
    receipt_url: Optional[str] = None

    @property
    def missing_fields(self) -> list[str]:
        """Required fields the service failed to return."""
        missing = []
        if self.amount is None:
            missing.append("amount")
        if not self.category:
            missing.append("category")
        return missing


class ManualExpenseEntry(BaseModel):
    """A user-typed expense, before validation."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(default="", max_length=75)
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    description: str = Field(default="", max_length=150)
    expense_date: Optional[date] = None
    vendor: Optional[str] = None
    receipt_url: Optional[str] = None


class ReceiptOutcome(BaseModel):
    """Result of a receipt upload, ready for the user."""

    accepted: bool
    message: str
    extraction: Optional[ReceiptExtraction] = None
    category: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)


class KnowledgeEntry(BaseModel):
    """A business fact fed into AI prompts."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    category: str = Field(default="general")
    tags: list[str] = Field(default_factory=list)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Result of validating a receipt, manual entry, or upload."""

    subject: str = Field(
        ...,
        description="What was validated (receipt, manual_entry, upload)"
    )
    validated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    is_valid: bool = Field(
        ...,
        description="True when no error-level issue was found"
    )
    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    # Warnings don't block but should be shown
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking warnings"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
