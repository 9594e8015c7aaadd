"""
Configuration Management for the Ledger Core

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which knobs exist and ensures
invalid configuration is rejected at startup.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Record store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///pocket_ledger.db",
        description="SQLAlchemy async database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging only)"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="How many times to retry opening the database"
    )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Ledger defaults
    default_currency: str = Field(
        default="GHS",
        description="Currency used when an account is opened without one"
    )

    # Validation thresholds
    future_date_tolerance_days: int = Field(
        default=7,
        ge=0,
        description="How many days in the future a transaction can be dated without a warning"
    )
    max_transaction_amount: Decimal = Field(
        default=Decimal("1000000"),
        gt=0,
        description="Amounts above this are flagged as suspicious (warning only)"
    )

    # Logging
    log_json: bool = Field(
        default=True,
        description="Render log lines as JSON (False for console output)"
    )

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError(f"Invalid currency code: {v}")
        return v


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus `<name>_error`
    entries describing any failure. Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
