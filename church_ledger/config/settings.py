"""
Configuration Management for Church Fund Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    funds_sheet_name: str = Field(default="Funds")
    offerings_sheet_name: str = Field(default="Offerings")
    bills_sheet_name: str = Field(default="Bills")
    advances_sheet_name: str = Field(default="Advances")
    transactions_sheet_name: str = Field(default="Transactions")
    bill_groups_sheet_name: str = Field(default="BillGroups")
    bill_subgroups_sheet_name: str = Field(default="BillSubgroups")
    members_sheet_name: str = Field(default="Members")
    ledger_sheet_name: str = Field(
        default="FundLedger",
        description="Append-only sheet of signed balance changes"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class LedgerSettings(BaseSettings):
    """
    Fund ledger behaviour.

    The keyword table drives the allocation policy: a record routed to
    "mission" lands in the first fund whose name contains that keyword.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    max_commit_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="How often a commit is retried after a version conflict"
    )
    retry_wait_min_seconds: float = Field(
        default=0.05,
        ge=0.0,
        description="Minimum wait between conflict retries"
    )
    retry_wait_max_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Maximum wait between conflict retries"
    )

    mission_fund_keyword: str = Field(default="mission")
    building_fund_keyword: str = Field(default="building")
    default_fund_keyword: str = Field(
        default="management",
        description="Fund keyword for everything not routed elsewhere"
    )

    @field_validator(
        'mission_fund_keyword',
        'building_fund_keyword',
        'default_fund_keyword',
    )
    @classmethod
    def normalize_keyword(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("Fund keyword cannot be empty")
        return v


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

    # Validation rules
    require_offering_member: bool = Field(
        default=True,
        description="Every offering must name the member who gave it"
    )
    max_record_amount: float = Field(
        default=10000000.0,
        gt=0,
        description="Maximum reasonable amount (for sanity checking)"
    )
    future_date_tolerance_days: int = Field(
        default=7,
        ge=0,
        description="How many days in the future a record date can be"
    )

    currency_symbol: str = Field(
        default="৳",
        description="Symbol used in user-facing amounts"
    )

    def format_amount(self, amount) -> str:
        """Format an amount for messages, e.g. ৳1,500.00."""
        return f"{self.currency_symbol}{amount:,.2f}"


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus a
    "<name>_error" entry for each failure. Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("google_sheets", "ledger", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
