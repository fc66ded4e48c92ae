"""Tests for the CLI application.

These tests verify that all CLI commands work correctly.
"""

from __future__ import annotations

import json
import runpy
import sys
from collections.abc import Callable
from pathlib import Path

import pytest
from typer.testing import CliRunner

from fragments import meta
from fragments.cli.app import app
from fragments.cli.common import parse_context_pairs

# Mark all tests in this module as CLI tests
# Run with: pytest -m cli
pytestmark = pytest.mark.cli

runner = CliRunner()

ECHO_PACK = {
    "name": "Echo",
    "description": "Repeat the text back",
    "triggers": {"slash": "/echo"},
    "steps": [{"type": "transform", "id": "out", "template": "{{ ctx.text }} x{{ ctx.times }}"}],
}


def test_app_help() -> None:
    """--help lists the commands."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "run" in result.stdout
    assert "packs" in result.stdout


def test_app_version() -> None:
    """--version prints the app name and version."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"{meta.__app_name__} {meta.__version__}" in result.stdout


def test_invalid_log_level() -> None:
    """Unknown log levels exit with code 1."""
    result = runner.invoke(app, ["--log-level", "LOUD", "steps"])
    assert result.exit_code == 1
    assert "Invalid log level: LOUD" in result.stdout


def test_verbose_flag() -> None:
    """-vv is accepted before a command."""
    result = runner.invoke(app, ["-vv", "steps", "--filter", "notify"])
    assert result.exit_code == 0


# ============================================================================
# steps
# ============================================================================


def test_steps_lists_all_types() -> None:
    """Every registered step type is listed."""
    result = runner.invoke(app, ["steps"])
    assert result.exit_code == 0
    assert "ai.generate" in result.stdout
    assert "job.dispatch" in result.stdout
    assert "21 step type(s)" in result.stdout


def test_steps_filter() -> None:
    """--filter keeps matching types only."""
    result = runner.invoke(app, ["steps", "--filter", "model"])
    assert result.exit_code == 0
    assert "model.query" in result.stdout
    assert "notify" not in result.stdout
    assert "4 step type(s)" in result.stdout


def test_steps_filter_no_match() -> None:
    """An empty filter result is not an error."""
    result = runner.invoke(app, ["steps", "-f", "nothing-like-this"])
    assert result.exit_code == 0
    assert "No step types matching 'nothing-like-this'" in result.stdout


# ============================================================================
# packs
# ============================================================================


def test_packs_empty(tmp_path: Path) -> None:
    """An empty search path reports no packs."""
    result = runner.invoke(app, ["packs", "--pack-path", str(tmp_path / "none")])
    assert result.exit_code == 0
    assert "No command packs found." in result.stdout


def test_packs_table(write_pack: Callable[..., Path]) -> None:
    """Valid and invalid packs are both listed."""
    root = write_pack("echo", ECHO_PACK)
    write_pack("broken", "steps: []\n")
    result = runner.invoke(app, ["packs", "-p", str(root)])
    assert result.exit_code == 0
    assert "/echo" in result.stdout
    assert "invalid" in result.stdout
    assert "2 pack(s), 1 invalid" in result.stdout


def test_packs_bad_config(tmp_path: Path) -> None:
    """A missing config file exits with code 1."""
    result = runner.invoke(app, ["packs", "--config", str(tmp_path / "missing.yml")])
    assert result.exit_code == 1
    assert "Failed to load config" in result.stdout


# ============================================================================
# run
# ============================================================================


def test_run_json(config_file: Path, write_pack: Callable[..., Path]) -> None:
    """--json prints the command result."""
    write_pack("echo", ECHO_PACK)
    result = runner.invoke(
        app,
        ["run", "/echo", "--config", str(config_file), "--ctx", "text=hi", "-c", "times=2", "--json"],
    )
    assert result.exit_code == 0, result.stdout
    payload = json.loads(result.stdout)
    assert payload["command"] == "echo"
    assert payload["success"] is True
    assert payload["steps"][0]["output"] == "hi x2"
    assert payload["performance"]["step_count"] == 1


def test_run_table(config_file: Path, write_pack: Callable[..., Path]) -> None:
    """The default output is a step table with a summary."""
    write_pack("echo", ECHO_PACK)
    result = runner.invoke(app, ["run", "echo", "--config", str(config_file), "--ctx", "text=hi"])
    assert result.exit_code == 0
    assert "/echo" in result.stdout
    assert "1 step(s)" in result.stdout


def test_run_dry_run(config_file: Path, write_pack: Callable[..., Path]) -> None:
    """--dry-run is reported in the result."""
    write_pack("echo", ECHO_PACK)
    result = runner.invoke(app, ["run", "echo", "--config", str(config_file), "--dry-run", "--json"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["dry_run"] is True


def test_run_failing_step(config_file: Path, write_pack: Callable[..., Path]) -> None:
    """A failed step exits with code 1."""
    write_pack("bad", {"steps": [{"type": "notify", "id": "ping"}]})
    result = runner.invoke(app, ["run", "bad", "--config", str(config_file), "--json"])
    assert result.exit_code == 1
    assert "\"success\": false" in result.stdout
    assert "\"id\": \"ping\"" in result.stdout


def test_run_unknown_pack(config_file: Path) -> None:
    """Unknown packs are reported as errors."""
    result = runner.invoke(app, ["run", "ghost", "--config", str(config_file)])
    assert result.exit_code == 1
    assert "Command pack not found: ghost" in result.stdout


def test_run_bad_ctx(config_file: Path) -> None:
    """--ctx values need an equals sign."""
    result = runner.invoke(app, ["run", "echo", "--config", str(config_file), "--ctx", "oops"])
    assert result.exit_code != 0


def test_parse_context_pairs() -> None:
    """JSON values are decoded and everything else is kept as text."""
    assert parse_context_pairs(["n=3", "flag=true", "text=a=b", "raw={bad"]) == {
        "n": 3,
        "flag": True,
        "text": "a=b",
        "raw": "{bad",
    }


def test_main_module(monkeypatch: pytest.MonkeyPatch) -> None:
    """python -m fragments runs the Typer app."""
    monkeypatch.setattr(sys, "argv", ["fragments", "--version"])
    with pytest.raises(SystemExit) as exc_info:
        runpy.run_module("fragments", run_name="__main__")
    assert exc_info.value.code == 0
