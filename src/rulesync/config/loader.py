"""Configuration loader with merge logic and precedence handling."""

import copy
import json
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from rulesync.config.defaults import CONFIG_FILENAME, DEFAULT_CONFIG
from rulesync.config.schema import RulesyncConfig
from rulesync.utils.jsonc import strip_comments


class ConfigError(ValueError):
    """Raised when configuration cannot be read or is invalid."""


def find_config_file(base_dir: Optional[Path] = None) -> Optional[Path]:
    """Return ``<base_dir>/rulesync.jsonc`` (default: cwd) if it exists."""
    candidate = (base_dir or Path.cwd()) / CONFIG_FILENAME
    return candidate if candidate.is_file() else None


def load_jsonc_file(file_path: Path) -> dict[str, Any]:
    """Load and parse a JSON-with-comments configuration file.

    Args:
        file_path: Path to the file

    Returns:
        Dictionary containing the parsed content (empty for an empty file)

    Raises:
        ConfigError: If the file is not valid JSONC or not a JSON object
        FileNotFoundError: If the file doesn't exist
    """
    text = file_path.read_text(encoding="utf-8")
    stripped = strip_comments(text).strip()
    if not stripped:
        return {}
    try:
        content = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Error loading {file_path}: {e}") from e
    if not isinstance(content, dict):
        raise ConfigError(f"Error loading {file_path}: top-level value must be an object")
    return content


def merge_configs(configs: list[dict[str, Any]]) -> dict[str, Any]:
    """Merge configuration dictionaries, later ones taking precedence.

    Nested dictionaries are merged recursively; lists (such as ``sources``)
    are replaced wholesale.
    """
    result: dict[str, Any] = {}
    for config in configs:
        result = _deep_merge(result, config)
    return result


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Supports:
    - RULESYNC_FETCH_CONCURRENCY: Override ``concurrency``
    """
    result = config.copy()
    if concurrency := os.getenv("RULESYNC_FETCH_CONCURRENCY"):
        try:
            result["concurrency"] = int(concurrency)
        except ValueError as e:
            raise ConfigError(
                f"RULESYNC_FETCH_CONCURRENCY must be an integer, got {concurrency!r}"
            ) from e
    return result


def load_config(
    config_path: Optional[Path] = None, base_dir: Optional[Path] = None
) -> RulesyncConfig:
    """Load configuration from all sources.

    Precedence (lowest to highest):
    1. Built-in defaults
    2. Project config (``<base_dir>/rulesync.jsonc``), unless config_path is given
    3. Explicit config_path
    4. Environment variables
    5. CLI flags (handled by caller)

    Raises:
        ConfigError: If a file is malformed or the merged config is invalid
        FileNotFoundError: If config_path is given but doesn't exist
    """
    configs_to_merge = [copy.deepcopy(DEFAULT_CONFIG)]

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        configs_to_merge.append(load_jsonc_file(config_path))
    elif (project_config := find_config_file(base_dir)) is not None:
        configs_to_merge.append(load_jsonc_file(project_config))

    merged = apply_env_overrides(merge_configs(configs_to_merge))

    try:
        return RulesyncConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed:\n{e}") from e
