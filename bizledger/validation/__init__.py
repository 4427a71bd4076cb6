"""Validation package."""

from bizledger.validation.validator import ExpenseValidator

__all__ = ["ExpenseValidator"]
