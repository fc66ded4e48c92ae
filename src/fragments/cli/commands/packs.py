"""List available command packs."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from fragments.cli.common import console, load_cli_config
from fragments.dsl import CommandPackLoader
from fragments.dsl.exceptions import DslError


def list_packs(
    pack_path: Annotated[
        list[Path] | None,
        typer.Option("--pack-path", "-p", help="Command pack directory (repeatable, replaces configured paths)."),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Configuration file."),
    ] = None,
) -> None:
    """List the command packs found in the search paths.

    Examples:
        fragments packs
        fragments packs --pack-path ./commands
    """
    config = load_cli_config(config_path, pack_path)
    loader = CommandPackLoader.from_config(config)
    slugs = loader.list_packs()
    if not slugs:
        console.print("[yellow]No command packs found.[/]")
        console.print(f"[dim]Searched: {', '.join(str(path) for path in loader.search_paths) or '(none)'}[/]")
        raise typer.Exit(code=0)

    table = Table(title="Command Packs", show_lines=False)
    table.add_column("Slug", style="cyan")
    table.add_column("Name")
    table.add_column("Trigger", style="green")
    table.add_column("Steps", justify="right")
    table.add_column("Description", style="dim")
    invalid = 0
    for slug in slugs:
        try:
            pack = loader.load(slug)
        except DslError as exc:
            invalid += 1
            table.add_row(slug, "[red]invalid[/]", "-", "-", str(exc))
            continue
        table.add_row(slug, pack.name, pack.slash or "-", str(len(pack.steps)), pack.description)
    console.print(table)
    console.print(f"\n[dim]{len(slugs)} pack(s), {invalid} invalid[/]")


__all__ = ["list_packs"]
