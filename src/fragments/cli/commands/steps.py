"""List registered step types."""

from __future__ import annotations

import inspect
from typing import Annotated

import typer
from rich.table import Table

from fragments.cli.common import console
from fragments.dsl import StepFactory


def _summary(step_class: object) -> str:
    doc = inspect.getdoc(step_class) or ""
    return doc.splitlines()[0] if doc else ""


def list_steps(
    filter_str: Annotated[
        str | None,
        typer.Option("--filter", "-f", help="Show only types containing this text."),
    ] = None,
) -> None:
    """List the step types a command can use.

    Examples:
        fragments steps
        fragments steps --filter model
    """
    factory = StepFactory()
    types = factory.get_available_types()
    if filter_str:
        types = [name for name in types if filter_str.lower() in name]
    if not types:
        console.print(f"[yellow]No step types matching '{filter_str}'[/]")
        raise typer.Exit(code=0)

    table = Table(title="Step Types", show_lines=False)
    table.add_column("Type", style="cyan")
    table.add_column("Class", style="green")
    table.add_column("Description", style="dim")
    for name in types:
        step = factory.create(name)
        table.add_row(name, type(step).__name__, _summary(type(step)))
    console.print(table)
    console.print(f"\n[dim]{len(types)} step type(s)[/]")


__all__ = ["list_steps"]
