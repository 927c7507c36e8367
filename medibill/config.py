"""Application configuration using pydantic-settings."""
from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BillingSettings(BaseSettings):
    """Configuration values for the billing reconciliation engine."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIBILL_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = Field(default="MediCare Billing")
    currency: str = Field(default="PHP", min_length=3, max_length=3)
    currency_symbol: str = Field(default="₱")
    api_base_url: Optional[str] = Field(
        default="http://localhost:5002/api",
        description="Billing REST API serving invoices, payments and patients.",
    )
    emr_base_url: Optional[str] = Field(default=None, description="EMR proxy, e.g. /api/emr")
    pharmacy_base_url: Optional[str] = Field(default=None)
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    tax_rate: float = Field(default=0.12, ge=0, le=1)
    auto_void_days: int = Field(default=30, ge=1)
    automation_interval_seconds: float = Field(default=300.0, gt=0)
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    seed_demo_data: bool = Field(
        default=False,
        description="Seed the in-memory ledger with illustrative demo records.",
    )
    date_formats: List[str] = Field(
        default_factory=lambda: ["%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%b %d, %Y", "%B %d, %Y"]
    )
    max_notifications: int = Field(default=100, ge=1)
    background_tasks: bool = Field(
        default=False,
        description="Run the automation schedule and reconciliation poller inside the API process.",
    )

    @field_validator("currency")
    @classmethod
    def _uppercase_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("api_base_url", "emr_base_url", "pharmacy_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None


_settings: BillingSettings | None = None


def get_settings() -> BillingSettings:
    """Return a cached instance of the application settings."""

    global _settings
    if _settings is None:
        _settings = BillingSettings()
    return _settings


__all__ = ["BillingSettings", "get_settings"]
