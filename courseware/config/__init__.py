"""Configuration management package for Courseware."""

from .config_manager import ConfigManager, ConfigValidationError, MissingConfigurationError
from .database_config import ConnectionOptions, RetryPolicy

__all__ = [
    'ConfigManager',
    'ConfigValidationError',
    'MissingConfigurationError',
    'ConnectionOptions',
    'RetryPolicy'
]
