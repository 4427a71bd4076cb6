"""
Expense Validation

Three entry points, one per way an expense enters the system:

- validate_upload: the file itself (format, size) before it is sent
- validate_extraction: what the receipt service returned
- validate_manual_entry: what the user typed

A missing amount or category from the receipt service is a recoverable
failure: the receipt is not ingested and the user is told exactly which
field was missing and what to do next. It is never raised as an error.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for the user to act on.
"""

from datetime import date, timedelta
from decimal import Decimal
from pathlib import PurePath
from typing import Optional

from bizledger.config import AppSettings, get_settings
from bizledger.models.expense import (
    ManualExpenseEntry,
    ReceiptConfidence,
    ReceiptExtraction,
    ValidationIssue,
    ValidationResult,
)


def _result(subject: str, issues: list[ValidationIssue]) -> ValidationResult:
    return ValidationResult(
        subject=subject,
        is_valid=not any(issue.severity == "error" for issue in issues),
        issues=issues,
        warnings=[issue.message for issue in issues if issue.severity == "warning"],
    )


class ExpenseValidator:
    """Validates receipts, manual entries and uploads."""

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def validate_upload(
        self,
        filename: str,
        file_size: int,
        mime_type: Optional[str] = None,
    ) -> ValidationResult:
        """Check the uploaded file before it is sent to the receipt service."""
        issues = []
        suffix = PurePath(filename or "").suffix.lower().lstrip(".")
        if not suffix and mime_type and "/" in mime_type:
            suffix = mime_type.split("/", 1)[1].lower()

        if suffix not in self._settings.supported_formats_list:
            issues.append(ValidationIssue(
                field="file",
                issue_type="unsupported_format",
                message=f"'{filename}' is not a supported image type",
                severity="error",
                suggested_fix=(
                    "Upload a photo in one of these formats: "
                    + ", ".join(self._settings.supported_formats_list)
                ),
            ))

        if file_size <= 0:
            issues.append(ValidationIssue(
                field="file",
                issue_type="empty",
                message="The uploaded file is empty",
                severity="error",
                suggested_fix="Take the photo again and re-upload it",
            ))
        elif file_size > self._settings.max_upload_size_bytes:
            issues.append(ValidationIssue(
                field="file",
                issue_type="too_large",
                message=f"The file is larger than {self._settings.max_upload_size_mb} MB",
                severity="error",
                suggested_fix="Upload a smaller or compressed photo",
            ))

        return _result("upload", issues)

    def validate_extraction(self, extraction: ReceiptExtraction) -> ValidationResult:
        """
        Check a receipt extraction before it is accepted.

        Missing amount/category are errors naming the field. Low
        confidence and odd values are warnings.
        """
        issues = []
        today = date.today()

        missing = extraction.missing_fields
        if missing:
            fields = " and ".join(missing)
            issues.append(ValidationIssue(
                field=",".join(missing),
                issue_type="missing",
                message=f"We couldn't read the {fields} from this receipt",
                severity="error",
                suggested_fix="Try a clearer photo, or add this expense with manual entry",
            ))

        if extraction.amount is not None:
            if extraction.amount <= 0:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message="The amount on this receipt must be greater than zero",
                    severity="error",
                    suggested_fix="Add this expense with manual entry",
                ))
            elif extraction.amount > self._settings.max_expense_amount:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="suspicious_value",
                    message=f"Amount (${extraction.amount:,.2f}) seems unusually high",
                    severity="warning",
                    suggested_fix="Please verify this amount is correct",
                ))

        min_confidence = ReceiptConfidence(self._settings.min_receipt_confidence)
        if extraction.confidence.rank < min_confidence.rank:
            issues.append(ValidationIssue(
                field="confidence",
                issue_type="low_confidence",
                message="The receipt was hard to read",
                severity="warning",
                suggested_fix="Please double-check the amount and category",
            ))

        max_future = today + timedelta(days=self._settings.future_date_tolerance_days)
        if extraction.expense_date and extraction.expense_date > max_future:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Receipt date ({extraction.expense_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        if (
            extraction.subtotal is not None
            and extraction.tax is not None
            and extraction.amount is not None
        ):
            expected = extraction.subtotal + extraction.tax
            if abs(extraction.amount - expected) > Decimal("0.05"):
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="inconsistent",
                    message=(
                        f"Total (${extraction.amount}) doesn't match "
                        f"subtotal + tax (${expected})"
                    ),
                    severity="warning",
                    suggested_fix="Please verify the amounts",
                ))

        return _result("receipt", issues)

    def validate_manual_entry(self, entry: ManualExpenseEntry) -> ValidationResult:
        """Title and a positive amount are required."""
        issues = []

        if not entry.title:
            issues.append(ValidationIssue(
                field="title",
                issue_type="missing",
                message="A title is required",
                severity="error",
                suggested_fix="Describe the expense in a few words, e.g. 'Client lunch'",
            ))

        if entry.amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="An amount is required",
                severity="error",
                suggested_fix="Enter the amount you paid",
            ))
        elif entry.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="The amount must be greater than zero",
                severity="error",
                suggested_fix="Check the amount you entered",
            ))
        elif entry.amount > self._settings.max_expense_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount (${entry.amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        max_future = date.today() + timedelta(days=self._settings.future_date_tolerance_days)
        if entry.expense_date and entry.expense_date > max_future:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Expense date ({entry.expense_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        return _result("manual_entry", issues)

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to users. Raw error text never appears here.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if result.has_errors:
            lines.append("❌ We couldn't save this expense:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
