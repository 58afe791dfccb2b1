"""Configuration loading and management."""

from rulesync.config.loader import (
    ConfigError,
    find_config_file,
    load_config,
    merge_configs,
)
from rulesync.config.schema import RulesyncConfig, SourceEntry

__all__ = [
    # Loader functions
    "ConfigError",
    "find_config_file",
    "load_config",
    "merge_configs",
    # Schema classes
    "RulesyncConfig",
    "SourceEntry",
]
