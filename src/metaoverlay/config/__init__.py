"""Application configuration helpers."""

from __future__ import annotations

from .env import env_flag, env_list
from .errors import ConfigurationError, MissingConfigurationError
from .logging import configure_logging, resolve_log_level
from .merge import get_merge_strategy_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "MissingConfigurationError",
    "StorageConfig",
    "configure_logging",
    "env_flag",
    "env_list",
    "get_database_config",
    "get_merge_strategy_config",
    "get_storage_config",
    "resolve_log_level",
]
