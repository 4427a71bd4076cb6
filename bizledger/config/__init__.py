"""Configuration package."""

from bizledger.config.settings import (
    AppSettings,
    ExpenseServiceSettings,
    ReconciliationSettings,
    Settings,
    SupabaseSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ExpenseServiceSettings",
    "ReconciliationSettings",
    "Settings",
    "SupabaseSettings",
    "get_settings",
    "validate_all_settings",
]
