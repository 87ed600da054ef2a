"""Configuration package."""

from budget_ledger.config.settings import (
    LedgerSettings,
    LoggingSettings,
    Settings,
    StoreSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "LedgerSettings",
    "LoggingSettings",
    "Settings",
    "StoreSettings",
    "get_settings",
    "validate_all_settings",
]
