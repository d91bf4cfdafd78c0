"""Unit tests for configuration module."""

import pytest

from retention_rules.config import Settings, get_settings


class TestSettings:
    """Test suite for Settings class."""

    def test_default_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that default settings are properly initialized."""
        monkeypatch.delenv("RETENTION_RULES_DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)

        assert settings.database_url == "sqlite:///retention_rules.sqlite3"
        assert settings.rule_cache_enabled is True
        assert settings.rule_cache_ttl == 5.0
        assert settings.default_owner == "default@user.com"
        assert settings.test_user == "test-scenarios@test.local"
        assert settings.log_level == "INFO"
        assert settings.debug is False

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading settings from environment variables."""
        monkeypatch.setenv("RETENTION_RULES_DATABASE_URL", "sqlite:///custom.sqlite3")
        monkeypatch.setenv("RETENTION_RULES_RULE_CACHE_TTL", "0.5")
        monkeypatch.setenv("RETENTION_RULES_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("RETENTION_RULES_DEBUG", "true")

        # Clear the cache to ensure fresh settings
        get_settings.cache_clear()

        settings = get_settings()

        assert settings.database_url == "sqlite:///custom.sqlite3"
        assert settings.rule_cache_ttl == 0.5
        assert settings.log_level == "DEBUG"
        assert settings.debug is True

        # Clean up
        get_settings.cache_clear()

    def test_get_settings_returns_cached_instance(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

        # Clean up
        get_settings.cache_clear()
