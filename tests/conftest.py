"""
Shared fixtures.

Every test passes its settings and clock explicitly so results do not
depend on the machine's timezone or environment.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest

from bizledger.config import AppSettings, ReconciliationSettings
from bizledger.models.expense import ExternalExpense, RelationalExpense
from bizledger.services.storage import (
    ExpenseStoreInterface,
    InMemoryConfigStore,
    NotFoundError,
    StorageError,
)


# Saturday afternoon
NOW = datetime(2024, 6, 15, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def utc_settings() -> ReconciliationSettings:
    return ReconciliationSettings(timezone="UTC")


@pytest.fixture
def ny_settings() -> ReconciliationSettings:
    return ReconciliationSettings(timezone="America/New_York")


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(config_store_path=None, audit_log_path=None)


@pytest.fixture
def make_record():
    """Factory for canonical records. A UUID id gives a relational record."""

    def _make(
        record_id=None,
        amount="10.00",
        timestamp: Optional[datetime] = None,
        effective_date: Optional[date] = None,
        expense_date: Optional[date] = None,
        category="Meals",
        title="Coffee",
        external: bool = False,
    ):
        timestamp = timestamp or NOW - timedelta(hours=1)
        fields = dict(
            amount=Decimal(amount),
            title=title,
            category=category,
            original_category=category,
            expense_date=expense_date,
            created_at=timestamp,
            effective_date=effective_date or expense_date or timestamp.date(),
            timestamp=timestamp,
        )
        if external:
            return ExternalExpense(id=record_id or f"ext-{uuid4().hex[:8]}", **fields)
        return RelationalExpense(id=record_id or uuid4(), **fields)

    return _make


class FailingConfigStore(InMemoryConfigStore):
    """Reads work, every write fails."""

    async def _write(self, key, value):
        raise StorageError("disk full")


@pytest.fixture
def failing_config_store() -> FailingConfigStore:
    return FailingConfigStore()


class InMemoryExpenseStore(ExpenseStoreInterface):
    """Relational store double with the same contract as the Supabase store."""

    def __init__(self, rows=None, fail: bool = False):
        self.rows: list[dict] = list(rows or [])
        self.fail = fail

    def _check(self):
        if self.fail:
            raise StorageError("database unavailable")

    async def insert_expense(self, owner_id: str, row: dict) -> dict:
        self._check()
        stored = {
            **row,
            "id": str(uuid4()),
            "user_id": owner_id,
            "created_at": NOW.isoformat(),
        }
        self.rows.append(stored)
        return dict(stored)

    async def update_expense(self, owner_id: str, expense_id: UUID, row: dict) -> dict:
        self._check()
        for stored in self.rows:
            if stored["id"] == str(expense_id) and stored.get("user_id") == owner_id:
                stored.update(row)
                return dict(stored)
        raise NotFoundError(f"Expense {expense_id} not found")

    async def delete_expense(self, owner_id: str, expense_id: UUID) -> bool:
        self._check()
        for row in self.rows:
            if row["id"] == str(expense_id) and row.get("user_id") == owner_id:
                self.rows.remove(row)
                return True
        raise NotFoundError(f"Expense {expense_id} not found")

    async def list_expenses(self, owner_id: str) -> list[dict]:
        self._check()
        return [dict(r) for r in self.rows if r.get("user_id") == owner_id]


@pytest.fixture
def expense_store() -> InMemoryExpenseStore:
    return InMemoryExpenseStore()
