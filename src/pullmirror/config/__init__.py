"""Configuration module for pullmirror.

This module provides configuration loading, validation, and schema definitions.

Usage:
    from pullmirror.config import load_config, Config

    config = load_config(required=False)  # Defaults when no file exists
    config = load_config("/path/to/config.yaml")  # Explicit path
"""

from pullmirror.config.loader import (
    ConfigError,
    ConfigNotFoundError,
    ConfigValidationError,
    EnvironmentVariableError,
    discover_config_path,
    load_config,
)
from pullmirror.config.schema import (
    Config,
    GitHubConfig,
    StateConfig,
    SyncConfig,
)

__all__ = [
    "Config",
    "ConfigError",
    "ConfigNotFoundError",
    "ConfigValidationError",
    "EnvironmentVariableError",
    "GitHubConfig",
    "StateConfig",
    "SyncConfig",
    "discover_config_path",
    "load_config",
]
