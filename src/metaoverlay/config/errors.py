"""Errors raised while reading configuration from the environment or files."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when a configuration value is present but invalid."""


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration values are absent or blank."""
