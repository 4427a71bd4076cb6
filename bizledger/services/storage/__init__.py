"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The relational expense table lives in Supabase; categories and cached
context live in a small key-value store.
"""

from bizledger.services.storage.interface import (
    AuditStorageInterface,
    ConfigStoreInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStoreInterface,
    NotFoundError,
    StorageError,
)
from bizledger.services.storage.config_store import (
    InMemoryConfigStore,
    JsonFileConfigStore,
    business_context_key,
    categories_key,
)
from bizledger.services.storage.audit_log import JsonlAuditStorage
from bizledger.services.storage.supabase_store import SupabaseExpenseStore

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ConfigStoreInterface",
    "ExpenseStoreInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryConfigStore",
    "JsonFileConfigStore",
    "JsonlAuditStorage",
    "SupabaseExpenseStore",
    # Keys
    "business_context_key",
    "categories_key",
]
