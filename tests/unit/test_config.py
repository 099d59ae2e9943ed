"""Unit tests for configuration module."""

import os
from decimal import Decimal
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from src.core.config import Settings, get_settings

REQUIRED_ENV = {
    "SUPABASE_URL": "https://test.supabase.co",
    "SUPABASE_SECRET_KEY": "test-secret",
}


class TestSettings:
    """Tests for Settings class."""

    def test_settings_loads_from_environment(self) -> None:
        """Test that Settings loads values from environment variables."""
        env_vars = {
            **REQUIRED_ENV,
            "APP_NAME": "test-app",
            "APP_ENV": "testing",
            "DEBUG": "true",
            "PORT": "9000",
            "STRIPE_SECRET_KEY": "sk_test_abc",
            "PAYPAL_MODE": "live",
            "RATE_LIMIT_CHECKOUT_REQUESTS": "5",
            "MAX_SHIPPING_COST": "250",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            settings = Settings()

            assert settings.app_name == "test-app"
            assert settings.app_env == "testing"
            assert settings.debug is True
            assert settings.port == 9000
            assert settings.paypal_mode == "live"
            assert settings.rate_limit_checkout_requests == 5
            assert settings.max_shipping_cost == Decimal("250")

    def test_checkout_defaults(self) -> None:
        """Test the storefront checkout defaults."""
        with patch.dict(os.environ, REQUIRED_ENV, clear=True):
            settings = Settings(_env_file=None)

            assert settings.checkout_currency == "eur"
            assert settings.min_item_quantity == 1
            assert settings.max_item_quantity == 100
            assert settings.max_shipping_cost == Decimal("1000")
            assert settings.rate_limit_checkout_requests == 10
            assert settings.rate_limit_window_seconds == 600
            assert settings.checkout_lookup_max_age_hours == 24
            assert settings.stripe_metadata_max_length == 500
            assert settings.paypal_custom_id_max_length == 127
            assert settings.rate_limit_backend == "memory"

    def test_settings_cors_origins_list(self) -> None:
        """Test that CORS origins are correctly parsed into a list."""
        env_vars = {
            **REQUIRED_ENV,
            "CORS_ORIGINS": "http://localhost:3000, http://example.com , http://test.com",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            settings = Settings()

            assert settings.cors_origins_list == [
                "http://localhost:3000",
                "http://example.com",
                "http://test.com",
            ]

    def test_shipping_countries_list(self) -> None:
        """Test that shipping countries are upper-cased and trimmed."""
        env_vars = {**REQUIRED_ENV, "SHIPPING_COUNTRIES": "fr, be ,,ch"}

        with patch.dict(os.environ, env_vars, clear=False):
            assert Settings().shipping_countries_list == ["FR", "BE", "CH"]

    def test_paypal_base_url_follows_mode(self) -> None:
        """Test sandbox and live PayPal endpoints."""
        with patch.dict(os.environ, {**REQUIRED_ENV, "PAYPAL_MODE": "sandbox"}, clear=False):
            assert Settings().paypal_base_url == "https://api-m.sandbox.paypal.com"
        with patch.dict(os.environ, {**REQUIRED_ENV, "PAYPAL_MODE": "live"}, clear=False):
            assert Settings().paypal_base_url == "https://api-m.paypal.com"

    def test_invalid_paypal_mode_rejected(self) -> None:
        """Test that an unknown PayPal mode fails validation."""
        with patch.dict(os.environ, {**REQUIRED_ENV, "PAYPAL_MODE": "staging"}, clear=False):
            with pytest.raises(ValidationError):
                Settings()

    def test_is_stripe_test_mode(self) -> None:
        """Test detection of Stripe test keys."""
        with patch.dict(os.environ, {**REQUIRED_ENV, "STRIPE_SECRET_KEY": "sk_test_123"}, clear=False):
            assert Settings().is_stripe_test_mode is True
        with patch.dict(os.environ, {**REQUIRED_ENV, "STRIPE_SECRET_KEY": "sk_live_123"}, clear=False):
            assert Settings().is_stripe_test_mode is False

    def test_is_production(self) -> None:
        """Test production environment detection."""
        with patch.dict(os.environ, {**REQUIRED_ENV, "APP_ENV": "production"}, clear=False):
            assert Settings().is_production is True

    def test_missing_supabase_settings_raise(self) -> None:
        """Test that Supabase credentials are required."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_returns_cached_instance(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
