"""Unit tests for configuration module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from storefront.core.config import Settings, get_settings
from storefront.services.cart_session import CartSessionConfig


class TestSettings:
    """Tests for Settings class."""

    def test_defaults(self) -> None:
        """Test the documented default lifetimes."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.cart_ttl_seconds == 420
        assert settings.cart_items_ttl_seconds == 604800
        assert settings.transaction_ttl_seconds == 900
        assert settings.checkout_lock_ttl_seconds == 1800
        assert settings.storage_prefix == "ecommerce_"
        assert settings.storage_backend == "memory"
        assert settings.currency == "INR"
        assert settings.offers_default_eligible is False

    def test_settings_loads_from_environment(self) -> None:
        """Test that Settings loads values from environment variables."""
        env_vars = {
            "APP_NAME": "test-app",
            "PORT": "9000",
            "STORAGE_BACKEND": "file",
            "STORAGE_FILE_PATH": "/tmp/cart.json",
            "CART_TTL_SECONDS": "60",
            "TRACKING_USE_OFFER_PRICE": "true",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            settings = Settings()

            assert settings.app_name == "test-app"
            assert settings.port == 9000
            assert settings.storage_backend == "file"
            assert settings.storage_file_path == "/tmp/cart.json"
            assert settings.cart_ttl_seconds == 60
            assert settings.tracking_use_offer_price is True

    def test_settings_cors_origins_list(self) -> None:
        """Test that CORS origins are correctly parsed into a list."""
        with patch.dict(os.environ, {"CORS_ORIGINS": "http://a.com, http://b.com ,"}, clear=False):
            settings = Settings()

            assert settings.cors_origins_list == ["http://a.com", "http://b.com"]

    def test_rejects_non_positive_ttl(self) -> None:
        """Test that lifetimes must be positive."""
        with patch.dict(os.environ, {"CART_TTL_SECONDS": "0"}, clear=False):
            with pytest.raises(ValidationError):
                Settings()

    def test_rejects_unknown_storage_backend(self) -> None:
        """Test that only known backends are accepted."""
        with patch.dict(os.environ, {"STORAGE_BACKEND": "redis"}, clear=False):
            with pytest.raises(ValidationError):
                Settings()

    def test_is_production(self) -> None:
        """Test the production flag."""
        with patch.dict(os.environ, {"APP_ENV": "production"}, clear=False):
            assert Settings().is_production is True


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_is_cached(self) -> None:
        """Test that get_settings returns the same instance."""
        get_settings.cache_clear()

        assert get_settings() is get_settings()

    def test_component_configs_follow_settings(self) -> None:
        """Test that component configs are built from settings."""
        env_vars = {"CART_TTL_SECONDS": "120", "TRANSACTION_TTL_SECONDS": "30", "CURRENCY": "USD"}

        with patch.dict(os.environ, env_vars, clear=False):
            get_settings.cache_clear()
            try:
                config = CartSessionConfig.from_settings()
            finally:
                get_settings.cache_clear()

        assert config.expiration.ttl_seconds == 120
        assert config.transactions.transaction_ttl_seconds == 30
        assert config.tracking.currency == "USD"
