"""
Abstract Storage Interfaces

DESIGN DECISION: We define abstract interfaces for every storage surface
the reconciliation core touches. This allows us to:
1. Swap the hosted relational store for another backend
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

Three surfaces exist:
- ExpenseStoreInterface: manually entered expense rows, keyed by owner
- ConfigStoreInterface: small key-value store (category list, AI context)
- AuditStorageInterface: append-only audit log
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
from uuid import UUID

from bizledger.models.audit import AuditEvent


class ExpenseStoreInterface(ABC):
    """
    Abstract interface for the relational expense table.

    Rows are plain dicts with columns equivalent to
    {id, user_id, amount, description, category, expense_date, created_at}.
    Unification into ExpenseRecord happens in the reconciliation layer,
    not here.
    """

    @abstractmethod
    async def insert_expense(self, owner_id: str, row: dict) -> dict:
        """
        Insert one expense row.

        Args:
            owner_id: Owner of the row
            row: Column values (without id/created_at; the store assigns them)

        Returns:
            The stored row as returned by the backend

        Raises:
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def update_expense(self, owner_id: str, expense_id: UUID, row: dict) -> dict:
        """
        Overwrite the given columns of one row, scoped to its owner.

        Returns:
            The updated row as returned by the backend

        Raises:
            NotFoundError: If no such row exists for the owner
            StorageError: If the update fails
        """
        pass

    @abstractmethod
    async def delete_expense(self, owner_id: str, expense_id: UUID) -> bool:
        """
        Delete one row by id, scoped to its owner.

        Raises:
            NotFoundError: If no such row exists for the owner
            StorageError: If the delete fails
        """
        pass

    @abstractmethod
    async def list_expenses(self, owner_id: str) -> list[dict]:
        """
        List all rows for an owner, newest `created_at` first.

        Raises:
            StorageError: If the backend cannot be reached
        """
        pass


class ConfigStoreInterface(ABC):
    """
    Small key-value persistence surface.

    Every read-modify-write goes through one asyncio.Lock, which wakes
    waiters in FIFO order. Two near-simultaneous saves therefore run one
    after the other and never interleave.

    Subclasses implement only the raw `_read` / `_write` primitives.
    """

    def __init__(self):
        self._lock = asyncio.Lock()

    @abstractmethod
    async def _read(self, key: str) -> Optional[Any]:
        """Return the stored value or None. Called with the lock held."""
        pass

    @abstractmethod
    async def _write(self, key: str, value: Any) -> None:
        """Persist a value. Called with the lock held."""
        pass

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._lock:
            value = await self._read(key)
        return default if value is None else value

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            await self._write(key, value)

    async def update(
        self,
        key: str,
        fn: Callable[[Any], Any],
        default: Any = None,
    ) -> Any:
        """
        Atomically read, transform and write one key.

        `fn` receives the current value (or `default`) and returns the new
        value; it must not mutate its argument. Returning an equal value
        skips the write.

        Returns:
            The value now stored under `key`
        """
        async with self._lock:
            stored = await self._read(key)
            current = default if stored is None else stored
            updated = fn(current)
            if stored is None or updated != stored:
                await self._write(key, updated)
            return updated


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
