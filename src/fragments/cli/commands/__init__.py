"""CLI command implementations."""

from fragments.cli.commands.packs import list_packs
from fragments.cli.commands.run import run_command
from fragments.cli.commands.steps import list_steps

__all__ = [
    "list_packs",
    "list_steps",
    "run_command",
]
