"""
Tests for application settings.
"""

import pytest
from pydantic import ValidationError

from floorops.core.config import EnvironmentMode, Settings, get_settings


class TestSettings:
    """Tests for Settings loading and validation."""

    def test_defaults(self):
        settings = get_settings()
        assert settings.env_mode == EnvironmentMode.DEVELOPMENT
        assert settings.is_development
        assert not settings.use_sql_store
        assert settings.auto_reject_timeout_seconds == 10.0
        assert settings.orders_collection == "orders"

    def test_env_mode_from_environment(self, monkeypatch):
        monkeypatch.setenv("ENV_MODE", "Production")
        get_settings.cache_clear()
        settings = get_settings()
        assert settings.is_production
        assert settings.use_sql_store

    def test_timeout_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("AUTO_REJECT_TIMEOUT_SECONDS", "0")
        with pytest.raises(ValidationError):
            Settings()

    def test_production_rejects_simulated_failures(self, monkeypatch):
        """Test simulated outages are flagged outside development."""
        monkeypatch.setenv("ENV_MODE", "staging")
        monkeypatch.setenv("STORE_FAILURE_RATE", "0.2")
        missing = Settings().validate_production_config()
        assert any("STORE_FAILURE_RATE" in key for key in missing)

    def test_development_needs_nothing(self):
        assert Settings().validate_production_config() == []
