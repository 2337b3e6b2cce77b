"""
Unit tests for Pydantic Settings configuration.

Tests defaults and the billing rule validation.
"""

import pytest
from pydantic import ValidationError

from kraftivibe.config.settings import Settings, get_settings


class TestSettings:
    """Tests for Settings configuration."""

    def test_settings_has_defaults(self):
        """Settings should have sensible defaults without any environment."""
        settings = Settings(_env_file=None)

        assert settings.default_currency == "USD"
        assert settings.max_trial_days == 90
        assert settings.failed_payment_threshold == 3
        assert settings.sweep_batch_size == 100

    def test_allowed_origins_includes_localhost(self):
        """allowed_origins should include localhost for development."""
        settings = Settings(_env_file=None)

        assert "http://localhost:5173" in settings.allowed_origins
        assert "http://localhost:3000" in settings.allowed_origins

    def test_environment_properties(self):
        assert Settings(_env_file=None, environment="production").is_production is True
        assert Settings(_env_file=None, environment="Development").is_development is True

    def test_stripe_enabled_follows_key(self):
        assert Settings(_env_file=None, stripe_secret_key=None).stripe_enabled is False
        assert Settings(_env_file=None, stripe_secret_key="sk_test_123").stripe_enabled is True

    def test_currency_is_uppercased(self):
        assert Settings(_env_file=None, default_currency="eur").default_currency == "EUR"

    @pytest.mark.parametrize("currency", ["US", "DOLLARS", "U5D"])
    def test_rejects_invalid_currency(self, currency):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, default_currency=currency)

    def test_rejects_zero_failure_threshold(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, failed_payment_threshold=0)

    def test_rejects_negative_trial_days(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, max_trial_days=-1)

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
