"""Run a command pack."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from fragments.cli.common import console, exit_error, load_cli_config, parse_context_pairs
from fragments.dsl import CommandResult, CommandRunner
from fragments.exceptions import FragmentsError


def _render_result(result: CommandResult) -> None:
    """Print step outcomes as a table followed by the run summary."""
    title = f"/{result.slug}" + (" (dry run)" if result.dry_run else "")
    table = Table(title=title, show_lines=False)
    table.add_column("Step", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Duration", justify="right")
    table.add_column("Output / Error")

    for outcome in result.steps:
        status = "[green]ok[/]" if outcome.success else "[red]failed[/]"
        detail = outcome.output if outcome.success else outcome.error
        text = json.dumps(detail, default=str, ensure_ascii=False) if detail is not None else "-"
        if len(text) > 80:
            text = text[:77] + "..."
        table.add_row(outcome.id, outcome.type, status, f"{outcome.duration_ms:.2f}ms", text)

    console.print(table)
    performance = result.performance
    console.print(
        f"\n[dim]{performance.get('step_count', 0)} step(s) in {performance.get('total_duration_ms', 0):.2f}ms[/]"
    )
    if result.error:
        console.print(f"[red]Error:[/] {result.error}")


def run_command(
    slug: Annotated[str, typer.Argument(help="Command slug (e.g. 'todo' or '/todo').")],
    ctx: Annotated[
        list[str] | None,
        typer.Option("--ctx", "-c", help="Invocation data as key=value (repeatable, JSON values allowed)."),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Simulate every step without side effects."),
    ] = False,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON."),
    ] = False,
    pack_path: Annotated[
        list[Path] | None,
        typer.Option("--pack-path", "-p", help="Command pack directory (repeatable, replaces configured paths)."),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Configuration file."),
    ] = None,
) -> None:
    """Run a command pack and report each step.

    Exits with code 1 when a step fails.

    Examples:
        # Run the todo pack with invocation data
        fragments run todo --ctx body="Call Bob tomorrow #work"

        # Preview without side effects, as JSON
        fragments run todo --ctx body="x" --dry-run --json
    """
    invocation = parse_context_pairs(ctx or [])
    config = load_cli_config(config_path, pack_path)
    try:
        runner = CommandRunner.from_config(config)
        result = runner.execute(slug, invocation, dry_run=dry_run)
    except FragmentsError as exc:
        exit_error(str(exc))

    if as_json:
        typer.echo(json.dumps(result.to_dict(), default=str, ensure_ascii=False, indent=2))
    else:
        _render_result(result)
    if not result.success:
        raise typer.Exit(code=1)


__all__ = ["run_command"]
