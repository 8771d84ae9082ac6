"""
Tests for environment-driven configuration.
"""

import logging

import pytest

from kitchen_ledger.utils.config import Config, get_config, reset_config
from kitchen_ledger.utils.constants import (
    DEFAULT_DB_TIMEOUT,
    DEFAULT_RETRY_MAX_ATTEMPTS,
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "KITCHEN_LEDGER_ENV",
        "KITCHEN_LEDGER_DATABASE_URL",
        "KITCHEN_LEDGER_DB_TIMEOUT",
        "KITCHEN_LEDGER_RETRY_MAX_ATTEMPTS",
        "KITCHEN_LEDGER_RETRY_BASE_DELAY",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    return monkeypatch


class TestConfigDefaults:
    """Values used when nothing is set."""

    def test_defaults(self, clean_env):
        config = Config()

        assert config.is_production
        assert config.db_timeout == DEFAULT_DB_TIMEOUT
        assert config.retry_max_attempts == DEFAULT_RETRY_MAX_ATTEMPTS
        assert config.retry_base_delay == pytest.approx(0.1)
        assert config.database_path.name == "kitchen_ledger.db"

    def test_development_uses_project_data_dir(self, clean_env):
        config = Config("development")

        assert config.is_development
        assert config.database_path.parent.name == "data"


class TestEnvironmentOverrides:
    """KITCHEN_LEDGER_* variables."""

    def test_database_url_override(self, clean_env):
        clean_env.setenv("KITCHEN_LEDGER_DATABASE_URL", "sqlite:///:memory:")

        assert Config().database_url == "sqlite:///:memory:"

    def test_tuning_values(self, clean_env):
        clean_env.setenv("KITCHEN_LEDGER_DB_TIMEOUT", "5")
        clean_env.setenv("KITCHEN_LEDGER_RETRY_MAX_ATTEMPTS", "7")
        clean_env.setenv("KITCHEN_LEDGER_RETRY_BASE_DELAY", "0.25")

        config = Config()

        assert config.db_timeout == 5
        assert config.retry_max_attempts == 7
        assert config.retry_base_delay == pytest.approx(0.25)

    @pytest.mark.parametrize(
        "name,value",
        [
            ("KITCHEN_LEDGER_RETRY_MAX_ATTEMPTS", "0"),
            ("KITCHEN_LEDGER_RETRY_MAX_ATTEMPTS", "three"),
            ("KITCHEN_LEDGER_DB_TIMEOUT", "-1"),
        ],
    )
    def test_invalid_values_fall_back(self, clean_env, caplog, name, value):
        """Bad values are logged and replaced by the default."""
        clean_env.setenv(name, value)

        with caplog.at_level(logging.WARNING):
            config = Config()

        assert config.retry_max_attempts == DEFAULT_RETRY_MAX_ATTEMPTS
        assert config.db_timeout == DEFAULT_DB_TIMEOUT
        assert f"Invalid {name} value '{value}'" in caplog.text

    def test_negative_delay_falls_back(self, clean_env):
        clean_env.setenv("KITCHEN_LEDGER_RETRY_BASE_DELAY", "-0.5")

        assert Config().retry_base_delay == pytest.approx(0.1)


class TestGetConfig:
    """Singleton behaviour."""

    def test_environment_from_env_var(self, clean_env):
        clean_env.setenv("KITCHEN_LEDGER_ENV", "development")

        assert get_config().is_development

    def test_singleton_keeps_environment(self, clean_env, caplog):
        """A later call with another environment returns the first instance."""
        first = get_config("production")

        with caplog.at_level(logging.WARNING):
            second = get_config("development")

        assert second is first
        assert second.is_production
        assert "Returning existing singleton" in caplog.text

    def test_reset(self, clean_env):
        first = get_config()
        reset_config()

        assert get_config() is not first
