"""External expense service client."""

from bizledger.services.external.expense_service import (
    ExpenseServiceClient,
    ExpenseServiceError,
    ReceiptRejectedError,
    ServiceUnavailableError,
    parse_receipt_response,
)

__all__ = [
    "ExpenseServiceClient",
    "ExpenseServiceError",
    "ReceiptRejectedError",
    "ServiceUnavailableError",
    "parse_receipt_response",
]
