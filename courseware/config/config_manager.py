"""
Configuration Manager for Courseware

Loads environment files and process environment once at startup and exposes
the database target, execution mode, driver options and retry policy.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values

from .database_config import ConnectionOptions, RetryPolicy

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


class MissingConfigurationError(ConfigValidationError):
    """Raised when a required configuration value is absent."""
    pass


class ConfigManager:
    """
    Central configuration management for Courseware.

    Provides:
    - Environment file loading with precedence (.env < .env.<APP_ENV> < os.environ)
    - The MongoDB target address and database name
    - Execution mode (development enables verbose driver command logging)
    - Immutable connection options and retry policy
    """

    DEFAULT_DATABASE_NAME = 'courseware'
    DEFAULT_APP_ENV = 'production'

    # Keys read once at construction
    TRACKED_VARS = (
        'MONGO_URI',
        'MONGO_DB_NAME',
        'APP_ENV',
        'LOG_LEVEL',
        'MONGO_MAX_POOL_SIZE',
        'MONGO_SERVER_SELECTION_TIMEOUT_MS',
        'MONGO_SOCKET_TIMEOUT_MS',
        'DB_MAX_RETRIES',
        'DB_RETRY_INTERVAL_MS',
        'DB_RETRY_BACKOFF'
    )

    def __init__(self, config_dir: Optional[str] = None, env: Optional[str] = None):
        """
        Initialize ConfigManager.

        Args:
            config_dir: Directory containing environment files (defaults to cwd)
            env: Execution mode override; otherwise APP_ENV from the environment
        """
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self._env_vars: Dict[str, str] = {}

        self._load_env_files(env or os.getenv('APP_ENV'))
        self._values = {key: self._lookup(key) for key in self.TRACKED_VARS}
        if env:
            self._values['APP_ENV'] = env

        self._connection_options = self._build_connection_options()
        self._retry_policy = self._build_retry_policy()

    def _load_env_files(self, env: Optional[str]):
        """Load .env, then .env.<env> so the more specific file wins."""
        self._load_env_file(self.config_dir / '.env')

        # APP_ENV may itself come from the base .env file
        env = env or self._env_vars.get('APP_ENV')
        if env:
            self._load_env_file(self.config_dir / f'.env.{env}')

    def _load_env_file(self, env_path: Path):
        """Load a single environment file into our internal env_vars dict."""
        if not env_path.exists():
            return
        values = dotenv_values(env_path)
        self._env_vars.update({k: v for k, v in values.items() if v is not None})
        logger.debug(f"Loaded configuration from {env_path}")

    def _lookup(self, key: str) -> Optional[str]:
        # os.environ first (highest precedence), then file-loaded values
        value = os.getenv(key)
        if value is None:
            value = self._env_vars.get(key)
        return value

    def _get_int(self, key: str, default: int) -> int:
        raw = self._values.get(key)
        if raw is None or raw.strip() == '':
            return default
        try:
            return int(raw)
        except ValueError:
            raise ConfigValidationError(f"Invalid {key}: '{raw}' - must be an integer")

    def _build_connection_options(self) -> ConnectionOptions:
        try:
            return ConnectionOptions(
                max_pool_size=self._get_int('MONGO_MAX_POOL_SIZE', 10),
                server_selection_timeout_ms=self._get_int('MONGO_SERVER_SELECTION_TIMEOUT_MS', 5000),
                socket_timeout_ms=self._get_int('MONGO_SOCKET_TIMEOUT_MS', 45000)
            )
        except ValueError as e:
            raise ConfigValidationError(f"Invalid connection options: {e}")

    def _build_retry_policy(self) -> RetryPolicy:
        backoff = (self._values.get('DB_RETRY_BACKOFF') or 'fixed').strip().lower()
        try:
            return RetryPolicy(
                max_retries=self._get_int('DB_MAX_RETRIES', 3),
                retry_interval=self._get_int('DB_RETRY_INTERVAL_MS', 5000) / 1000,
                backoff=backoff
            )
        except ValueError as e:
            raise ConfigValidationError(f"Invalid retry policy: {e}")

    @property
    def mongo_uri(self) -> Optional[str]:
        """MongoDB connection string, or None when not configured."""
        uri = self._values.get('MONGO_URI')
        if uri is None or not uri.strip():
            return None
        return uri.strip()

    def require_mongo_uri(self) -> str:
        """
        Get the MongoDB connection string.

        Raises:
            MissingConfigurationError: If MONGO_URI is absent or blank
        """
        uri = self.mongo_uri
        if not uri:
            raise MissingConfigurationError("MONGO_URI is required but not configured")
        return uri

    @property
    def database_name(self) -> str:
        """Database used when the connection string names none."""
        return self._values.get('MONGO_DB_NAME') or self.DEFAULT_DATABASE_NAME

    @property
    def app_env(self) -> str:
        """Execution mode (development, staging, production, ...)."""
        return (self._values.get('APP_ENV') or self.DEFAULT_APP_ENV).lower()

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == 'development'

    @property
    def log_level(self) -> str:
        """Root log level name."""
        return (self._values.get('LOG_LEVEL') or 'INFO').upper()

    @property
    def connection_options(self) -> ConnectionOptions:
        return self._connection_options

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy
