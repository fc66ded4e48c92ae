"""Exceptions raised by the fragments.config module.

Exception hierarchy::

    FragmentsError
        ConfigError
            ConfigFileNotFoundError (also FileNotFoundError)
            ConfigFormatError (also ValueError)
"""

from __future__ import annotations

from fragments.exceptions import FragmentsError


class ConfigError(FragmentsError):
    """Base exception for configuration errors."""


class ConfigFileNotFoundError(ConfigError, FileNotFoundError):
    """The requested configuration file does not exist."""


class ConfigFormatError(ConfigError, ValueError):
    """The configuration file is not valid YAML or not a mapping."""


__all__ = [
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigFormatError",
]
