"""
Application Settings for Kraftivibe Subscriptions

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Nothing here is mandatory: without DATABASE_URL the API boots and
    skips database initialization, without STRIPE_SECRET_KEY the gateway
    calls are skipped.
    """

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Admin Configuration
    admin_api_key: Optional[str] = None

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None

    # Billing Rules
    default_currency: str = "USD"
    max_trial_days: int = 90
    failed_payment_threshold: int = 3

    # Background Sweeps
    sweep_batch_size: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_billing_rules(self) -> "Settings":
        """Normalize the currency and reject impossible billing thresholds."""
        self.default_currency = self.default_currency.upper()
        if len(self.default_currency) != 3 or not self.default_currency.isalpha():
            raise ValueError(
                f"DEFAULT_CURRENCY must be a 3-letter code, got {self.default_currency!r}"
            )

        if self.failed_payment_threshold < 1:
            raise ValueError("FAILED_PAYMENT_THRESHOLD must be at least 1")

        if self.max_trial_days < 0:
            raise ValueError("MAX_TRIAL_DAYS cannot be negative")

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @property
    def stripe_enabled(self) -> bool:
        """Whether a Stripe key is configured."""
        return bool(self.stripe_secret_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
