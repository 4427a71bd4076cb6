"""
Configuration Management for BizLedger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here, including the
reconciliation heuristics (24 hour window, 3 day skew guard, 5 minute
duplicate window, artifact hour). They are compatibility thresholds and
must stay adjustable without touching pipeline code.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CATEGORIES = (
    "Meals,Entertainment,Travel,Office Supplies,Marketing,"
    "Software,Equipment,Professional Services,Utilities,Other"
)


class ExpenseServiceSettings(BaseSettings):
    """External receipt/classification service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EXPENSE_SERVICE_",
        extra="ignore"
    )

    base_url: str = Field(
        ...,
        description="Base URL of the external expense service"
    )
    api_key: Optional[str] = Field(
        default=None,
        description="Bearer token sent with every request, if the service needs one"
    )
    timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=120,
        description="Per-request timeout"
    )
    max_attempts: int = Field(
        default=1,
        ge=1,
        le=5,
        description="Attempts per call (1 = no retry)"
    )

    @field_validator('base_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class SupabaseSettings(BaseSettings):
    """Hosted relational store (Supabase PostgREST) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        extra="ignore"
    )

    url: str = Field(
        ...,
        description="Project URL, e.g. https://xyz.supabase.co"
    )
    api_key: str = Field(
        ...,
        description="Service or anon API key"
    )
    expenses_table: str = Field(
        default="expenses",
        description="Name of the expenses table"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Per-request timeout"
    )
    max_attempts: int = Field(
        default=1,
        ge=1,
        le=5,
        description="Attempts per call (1 = no retry)"
    )

    @field_validator('url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ReconciliationSettings(BaseSettings):
    """Thresholds used by the reconciliation pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="RECONCILE_",
        extra="ignore"
    )

    timezone: str = Field(
        default="UTC",
        description="Viewer's IANA timezone, used for day boundaries"
    )
    recent_window_hours: int = Field(
        default=24,
        ge=1,
        description="External records newer than this are placed on today"
    )
    skew_guard_days: int = Field(
        default=3,
        ge=0,
        description="Records dated within this many days are placed on today"
    )
    duplicate_window_minutes: int = Field(
        default=5,
        ge=1,
        description="Timestamps closer than this may be functional duplicates"
    )
    amount_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        gt=0,
        description="Amounts closer than this may be functional duplicates"
    )
    artifact_hour: int = Field(
        default=5,
        ge=0,
        le=23,
        description="Local hour produced by the upstream timestamp bug"
    )

    # Data contract caps
    title_max_length: int = Field(default=75, ge=1)
    description_max_length: int = Field(default=150, ge=1)
    receipt_description_max_length: int = Field(default=200, ge=1)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown IANA names at startup rather than mid-pass."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


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

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Local persistence
    config_store_path: Optional[str] = Field(
        default=None,
        description="JSON file backing the category/context store (in-memory if unset)"
    )
    audit_log_path: Optional[str] = Field(
        default=None,
        description="JSON-lines file for audit events (local log only if unset)"
    )

    default_categories: str = Field(
        default=DEFAULT_CATEGORIES,
        description="Comma-separated starting category list"
    )

    # File upload limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum upload file size in MB"
    )
    supported_image_formats: str = Field(
        default="jpg,jpeg,png,webp,heic",
        description="Comma-separated list of supported image formats"
    )

    # Validation thresholds
    min_receipt_confidence: str = Field(
        default="medium",
        pattern="^(low|medium|high)$",
        description="Receipts below this confidence get a review warning"
    )
    max_expense_amount: Decimal = Field(
        default=Decimal("100000"),
        description="Maximum reasonable single expense (for sanity checking)"
    )
    future_date_tolerance_days: int = Field(
        default=1,
        description="How many days in the future an expense date can be"
    )

    @property
    def default_categories_list(self) -> list[str]:
        """Get default categories as a list."""
        return [c.strip() for c in self.default_categories.split(",") if c.strip()]

    @property
    def supported_formats_list(self) -> list[str]:
        """Get supported formats as a list."""
        return [fmt.strip().lower() for fmt in self.supported_image_formats.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


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

    # Loaded lazily to allow partial configuration

    @property
    def expense_service(self) -> ExpenseServiceSettings:
        return ExpenseServiceSettings()

    @property
    def supabase(self) -> SupabaseSettings:
        return SupabaseSettings()

    @property
    def reconciliation(self) -> ReconciliationSettings:
        return ReconciliationSettings()

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

    Returns a dict of {setting_name: is_valid}, plus a
    `<name>_error` entry for every section that failed.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("expense_service", "supabase", "reconciliation", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
