"""Print shop configuration module.

Loads all environment variables with type validation using pydantic-settings.
Payment keys are environment-dependent (test vs. live) and resolved through
properties so callers never branch on the environment themselves.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Print provider (Prodigi) ──
    prodigi_api_key: str = Field(default="", description="Prodigi API key")
    prodigi_base_url: str = Field(
        default="https://api.sandbox.prodigi.com/v4.0",
        description="Prodigi REST API base URL",
    )
    prodigi_default_shipping_method: str = Field(
        default="Budget",
        description="Shipping method used when neither request nor catalog set one",
    )
    prodigi_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single Prodigi HTTP call",
        gt=0,
    )
    prodigi_max_retries: int = Field(
        default=3,
        description="Attempts per Prodigi call on transient failures",
        ge=1,
        le=10,
    )
    prodigi_backoff_seconds: float = Field(
        default=0.5,
        description="Base delay for exponential backoff between retries",
        ge=0,
    )
    asset_base_url: str = Field(
        default="",
        description="Public base URL used to build absolute asset URLs from stored paths",
    )

    # ── Payments (Stripe) ──
    environment: str = Field(
        default="test",
        description="Payment environment: test or prod",
    )
    sk_test_stripe: str = Field(default="", description="Stripe test secret key")
    sk_live_stripe: str = Field(default="", description="Stripe live secret key")
    pk_test_stripe: str = Field(default="", description="Stripe test publishable key")
    pk_live_stripe: str = Field(default="", description="Stripe live publishable key")
    stripe_webhook_secret: str = Field(default="", description="Stripe live webhook signing secret")
    stripe_test_webhook_secret: str = Field(
        default="",
        description="Stripe test webhook signing secret (falls back to the live one)",
    )

    # ── Admin ──
    admin_api_token: str = Field(
        default="",
        description="Bearer token required by the /admin routes",
    )

    # ── General ──
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    db_path: str = Field(
        default="data/printshop.db",
        description="Path to SQLite database file",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {valid}, got '{v}'")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure the payment environment is test or prod."""
        lower = v.strip().lower()
        if lower not in ("test", "prod"):
            raise ValueError(f"environment must be 'test' or 'prod', got '{v}'")
        return lower

    @field_validator("prodigi_base_url", "asset_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @property
    def db_path_resolved(self) -> Path:
        """Return resolved Path object for the database."""
        return Path(self.db_path)

    @property
    def stripe_secret_key(self) -> str:
        return self.sk_live_stripe if self.environment == "prod" else self.sk_test_stripe

    @property
    def stripe_publishable_key(self) -> str:
        return self.pk_live_stripe if self.environment == "prod" else self.pk_test_stripe

    @property
    def stripe_signing_secret(self) -> str:
        if self.environment == "prod":
            return self.stripe_webhook_secret
        return self.stripe_test_webhook_secret or self.stripe_webhook_secret

    def has_prodigi_key(self) -> bool:
        """Check if the Prodigi API key is configured."""
        return bool(self.prodigi_api_key)

    def has_stripe_config(self) -> bool:
        """Check if a Stripe secret key is configured for the current environment."""
        return bool(self.stripe_secret_key)

    def has_webhook_secret(self) -> bool:
        return bool(self.stripe_signing_secret)


def get_settings(**overrides: str) -> Settings:
    """Create a Settings instance with optional overrides.

    Args:
        **overrides: Key-value pairs to override env/defaults.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If any value fails validation.
    """
    return Settings(**overrides)
