"""Configuration management for fragments.

Examples:
    >>> from fragments.config import get_config
    >>> config = get_config()  # doctest: +SKIP
    >>> config.ai.enabled  # doctest: +SKIP
    True
"""

from fragments.config.exceptions import ConfigError, ConfigFileNotFoundError, ConfigFormatError
from fragments.config.loader import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_FILENAME,
    get_config,
    load_config,
    reset_config,
)

__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_FILENAME",
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigFormatError",
    "get_config",
    "load_config",
    "reset_config",
]
