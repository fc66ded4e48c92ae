"""Logging setup for fragments.

Library modules only create named loggers. Applications (and the CLI) call
:func:`init_logging` once to attach a Rich console handler to the
``fragments`` logger hierarchy.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

#: Root logger name for the package.
LOGGER_NAME = "fragments"

#: Accepted level names for ``init_logging``.
VALID_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def init_logging(level: str | int = "WARNING", *, console: Console | None = None) -> logging.Logger:
    """Configure the ``fragments`` logger with a Rich handler.

    Calling it again replaces the previously installed handler.

    Args:
        level: Level name (case-insensitive) or numeric level.
        console: Console to log to (defaults to stderr).

    Returns:
        The configured package logger.

    Raises:
        ValueError: If ``level`` is not a known level name.
    """
    if isinstance(level, str):
        name = level.upper()
        if name not in VALID_LEVELS:
            raise ValueError(f"Invalid log level {level!r}. Valid levels: {', '.join(VALID_LEVELS)}")
        numeric = getattr(logging, name)
    else:
        numeric = level

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_fragments_handler", False):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler._fragments_handler = True  # type: ignore[attr-defined]  # pylint: disable=protected-access
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(numeric)
    return logger


__all__ = [
    "LOGGER_NAME",
    "VALID_LEVELS",
    "init_logging",
]
