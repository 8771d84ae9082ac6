"""
Configuration management for the Kitchen Ledger application.

This module handles:
- Database path configuration
- Environment-specific configuration (development vs. production)
- Store tuning (connection timeout, retry attempts and backoff)
"""

import logging
import os
from pathlib import Path
from typing import Optional

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
    DEFAULT_DB_TIMEOUT,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_ATTEMPTS,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "KITCHEN_LEDGER_"


class Config:
    """
    Application configuration manager.

    Handles all configuration settings including database paths,
    environment settings, and store tuning.
    """

    def __init__(self, environment: str = "production"):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
        """
        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION
        self._database_version = DATABASE_VERSION

        if environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_data_dir()

        self._database_dir = self._base_dir
        self._database_path = self._database_dir / DATABASE_FILENAME

        # Explicit URL wins over the file path (e.g. sqlite:///:memory:)
        self._database_url_override = os.environ.get(f"{ENV_PREFIX}DATABASE_URL")

        self._db_timeout = self._read_int("DB_TIMEOUT", DEFAULT_DB_TIMEOUT, minimum=1)
        self._retry_max_attempts = self._read_int(
            "RETRY_MAX_ATTEMPTS", DEFAULT_RETRY_MAX_ATTEMPTS, minimum=1
        )
        self._retry_base_delay = self._read_float(
            "RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY, minimum=0.0
        )

    def _get_project_data_dir(self) -> Path:
        """Project data/ directory, used for development."""
        project_root = Path(__file__).parent.parent.parent
        return project_root / "data"

    def _get_user_data_dir(self) -> Path:
        """Per-user application directory, used for production."""
        return Path.home() / ".kitchen_ledger"

    def _ensure_directories(self):
        """Create necessary directories if they don't exist."""
        self._database_dir.mkdir(parents=True, exist_ok=True)

    def _read_int(self, name: str, default: int, minimum: int) -> int:
        raw = os.environ.get(f"{ENV_PREFIX}{name}")
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            value = None
        if value is None or value < minimum:
            logger.warning(
                f"Invalid {ENV_PREFIX}{name} value '{raw}', using default {default}"
            )
            return default
        return value

    def _read_float(self, name: str, default: float, minimum: float) -> float:
        raw = os.environ.get(f"{ENV_PREFIX}{name}")
        if raw is None:
            return default
        try:
            value = float(raw)
        except ValueError:
            value = None
        if value is None or value < minimum:
            logger.warning(
                f"Invalid {ENV_PREFIX}{name} value '{raw}', using default {default}"
            )
            return default
        return value

    @property
    def app_name(self) -> str:
        """Application name."""
        return self._app_name

    @property
    def app_version(self) -> str:
        """Application version."""
        return self._app_version

    @property
    def database_version(self) -> str:
        """Database schema version."""
        return self._database_version

    @property
    def database_path(self) -> Path:
        """Full path to the database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Creates the data directory on first use for file-based databases.

        Returns:
            Database URL string for SQLAlchemy
        """
        if self._database_url_override:
            return self._database_url_override
        self._ensure_directories()
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def db_timeout(self) -> int:
        """Seconds SQLite waits on a locked database before failing."""
        return self._db_timeout

    @property
    def retry_max_attempts(self) -> int:
        """Total attempts for retryable operations (first try included)."""
        return self._retry_max_attempts

    @property
    def retry_base_delay(self) -> float:
        """Base delay in seconds for exponential backoff."""
        return self._retry_base_delay

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def database_exists(self) -> bool:
        """Check if database file exists."""
        return self._database_path.exists()

    def __repr__(self) -> str:
        """String representation of config."""
        return f"Config(environment='{self.environment}', database_path='{self._database_path}')"


_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument - this prevents accidental database
    switching mid-session.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    KITCHEN_LEDGER_ENV or defaults to production. Ignored if
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(f"{ENV_PREFIX}ENV", "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton to prevent database switching."
        )

    return _config_instance


def reset_config():
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None
