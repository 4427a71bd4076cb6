"""Services package."""

from bizledger.services.external import (
    ExpenseServiceClient,
    ExpenseServiceError,
    ReceiptRejectedError,
    ServiceUnavailableError,
)
from bizledger.services.storage import (
    AuditStorageInterface,
    ConfigStoreInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStoreInterface,
    InMemoryConfigStore,
    JsonFileConfigStore,
    JsonlAuditStorage,
    NotFoundError,
    StorageError,
    SupabaseExpenseStore,
)

__all__ = [
    # External service
    "ExpenseServiceClient",
    "ExpenseServiceError",
    "ReceiptRejectedError",
    "ServiceUnavailableError",
    # Storage services
    "AuditStorageInterface",
    "ConfigStoreInterface",
    "ConnectionError",
    "DuplicateError",
    "ExpenseStoreInterface",
    "InMemoryConfigStore",
    "JsonFileConfigStore",
    "JsonlAuditStorage",
    "NotFoundError",
    "StorageError",
    "SupabaseExpenseStore",
]
