"""YAML configuration loader.

Configuration is resolved in layers, later layers winning:

1. Packaged defaults (``fragments/config/fragments.conf.yml``)
2. User file: explicit ``path`` argument, else ``$FRAGMENTS_CONFIG``,
   else ``fragments.conf.yml`` in the current working directory

``${VAR}`` and ``${VAR:-default}`` placeholders in string values are
expanded from the environment after merging.
"""

from __future__ import annotations

import logging
import os
import re
import time
from pathlib import Path
from typing import Any

import yaml
from box import Box

from fragments.config.exceptions import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigFormatError,
)

logger = logging.getLogger(__name__)

#: Default configuration filename searched in the working directory.
DEFAULT_CONFIG_FILENAME = "fragments.conf.yml"

#: Environment variable pointing to an explicit configuration file.
CONFIG_ENV_VAR = "FRAGMENTS_CONFIG"

#: Packaged defaults, always loaded first.
DEFAULTS_PATH = Path(__file__).with_name(DEFAULT_CONFIG_FILENAME)

_ENV_VAR_PATTERN = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)(?::-([^}]*))?\}")

_config_cache: Box | None = None
_config_loaded_at: float = 0.0


def _expand_env_vars(value: str, source: str | None = None) -> str:
    """Expand environment variables in a string value.

    Args:
        value: String potentially containing ``${VAR}`` patterns.
        source: Source file for error messages.

    Returns:
        String with environment variables expanded.

    Raises:
        ConfigError: If a required variable is not set.

    Examples:
        >>> os.environ["FRAG_TEST_VAR"] = "hello"
        >>> _expand_env_vars("${FRAG_TEST_VAR} world")
        'hello world'
        >>> _expand_env_vars("${FRAG_MISSING:-fallback}")
        'fallback'
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default_value = match.group(2)
        env_value = os.environ.get(var_name)
        if env_value is not None:
            return env_value
        if default_value is not None:
            return default_value
        where = f" (in {source})" if source else ""
        raise ConfigError(f"Environment variable '{var_name}' is not set{where}")

    return _ENV_VAR_PATTERN.sub(replacer, value)


def _expand_env_vars_recursive(data: Any, source: str | None = None) -> Any:
    if isinstance(data, dict):
        return {k: _expand_env_vars_recursive(v, source) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars_recursive(item, source) for item in data]
    if isinstance(data, str):
        return _expand_env_vars(data, source)
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``, recursing into mappings.

    Examples:
        >>> _deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}})
        {'a': {'x': 1, 'y': 3}}
    """
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML file and return its top-level mapping.

    Raises:
        ConfigFileNotFoundError: If the file does not exist.
        ConfigFormatError: If the file is not valid YAML or not a mapping.
    """
    if not path.is_file():
        raise ConfigFileNotFoundError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigFormatError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFormatError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def _resolve_user_path(path: str | Path | None, filename: str) -> Path | None:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    candidate = Path.cwd() / filename
    return candidate if candidate.is_file() else None


def load_config(
    path: str | Path | None = None,
    *,
    filename: str = DEFAULT_CONFIG_FILENAME,
) -> Box:
    """Load configuration from packaged defaults and an optional user file.

    Args:
        path: Explicit config file. Must exist when given.
        filename: Filename searched in the working directory.

    Returns:
        Merged configuration as a ``Box``.

    Raises:
        ConfigFileNotFoundError: If an explicit path does not exist.
        ConfigFormatError: If a file is malformed.

    Examples:
        >>> config = load_config()  # doctest: +SKIP
        >>> config.engine.slow_command_ms  # doctest: +SKIP
        1000
    """
    data = _read_yaml(DEFAULTS_PATH)
    user_path = _resolve_user_path(path, filename)
    source = str(DEFAULTS_PATH)
    if user_path is not None:
        logger.debug("Loading config from %s", user_path)
        data = _deep_merge(data, _read_yaml(user_path))
        source = str(user_path)
    return Box(_expand_env_vars_recursive(data, source))


def get_config(*, force_reload: bool = False, max_age: float | None = None) -> Box:
    """Return the process-wide configuration, loading it on first use.

    Args:
        force_reload: Reload even if a cached config exists.
        max_age: Reload when the cached config is older than this (seconds).

    Returns:
        The cached configuration ``Box``.
    """
    global _config_cache, _config_loaded_at  # pylint: disable=global-statement
    expired = max_age is not None and time.monotonic() - _config_loaded_at > max_age
    if _config_cache is None or force_reload or expired:
        _config_cache = load_config()
        _config_loaded_at = time.monotonic()
    return _config_cache


def reset_config() -> None:
    """Drop the cached configuration (next ``get_config`` reloads)."""
    global _config_cache, _config_loaded_at  # pylint: disable=global-statement
    _config_cache = None
    _config_loaded_at = 0.0


__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_FILENAME",
    "get_config",
    "load_config",
    "reset_config",
]
