"""Typer application entry point for the ``fragments`` command."""

from __future__ import annotations

import logging
from typing import Annotated

import typer

from fragments import meta
from fragments.cli.commands import list_packs, list_steps, run_command
from fragments.cli.common import console
from fragments.logging import VALID_LEVELS, init_logging

app = typer.Typer(
    name=meta.__app_name__,
    help=f"{meta.__app_name__}: {meta.__description__}.",
    no_args_is_help=True,
    add_completion=False,
)


def get_cli_logger() -> logging.Logger:
    """Return the logger used by CLI commands."""
    return logging.getLogger("fragments.cli")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"{meta.__app_name__} {meta.__version__}")
        raise typer.Exit()


def _resolve_level(log_level: str | None, verbose: int) -> str:
    if verbose >= 2:
        return "DEBUG"
    if verbose == 1:
        return "INFO"
    return (log_level or "WARNING").upper()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit."),
    ] = False,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help=f"Log level ({', '.join(VALID_LEVELS)})."),
    ] = None,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity (-v info, -vv debug)."),
    ] = 0,
) -> None:
    """Run declarative slash commands and inspect the step engine."""
    level = _resolve_level(log_level, verbose)
    if level not in VALID_LEVELS:
        console.print(f"[red]Invalid log level: {log_level}[/]")
        console.print(f"[dim]Valid levels: {', '.join(VALID_LEVELS)}[/]")
        raise typer.Exit(code=1)
    init_logging(level)
    get_cli_logger().debug("Log level set to %s", level)


app.command(name="run")(run_command)
app.command(name="steps")(list_steps)
app.command(name="packs")(list_packs)


if __name__ == "__main__":
    app()


__all__ = [
    "app",
    "get_cli_logger",
]
