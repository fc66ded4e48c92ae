"""Shared helpers for CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any, NoReturn

import typer
from box import Box
from rich.console import Console

from fragments.config import load_config
from fragments.config.exceptions import ConfigError

console = Console()


def exit_error(message: str, code: int = 1) -> NoReturn:
    """Print ``message`` in red and exit with ``code``."""
    console.print(f"[red]{message}[/]")
    raise typer.Exit(code=code)


def parse_context_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """Turn ``key=value`` options into invocation data.

    Values that parse as JSON are decoded; anything else stays a string.

    Raises:
        typer.BadParameter: If a pair has no ``=``.

    Examples:
        >>> parse_context_pairs(["user_id=7", "body=Call Bob", 'tags=["a"]'])
        {'user_id': 7, 'body': 'Call Bob', 'tags': ['a']}
    """
    data: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--ctx")
        try:
            data[key.strip()] = json.loads(raw)
        except ValueError:
            data[key.strip()] = raw
    return data


def load_cli_config(path: Path | None, pack_paths: list[Path] | None = None) -> Box:
    """Load configuration for a command, exiting with code 1 on failure.

    Args:
        path: Explicit config file, or None for the default lookup.
        pack_paths: Pack directories replacing ``engine.pack_paths``.
    """
    try:
        config = load_config(path)
    except ConfigError as exc:
        exit_error(f"Failed to load config: {exc}")
    if pack_paths:
        config.engine.pack_paths = [str(item) for item in pack_paths]
    return config


__all__ = [
    "console",
    "exit_error",
    "load_cli_config",
    "parse_context_pairs",
]
