"""Configuration package."""

from ledger_core.config.settings import (
    AppSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
