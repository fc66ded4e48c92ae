"""Shared pytest fixtures for the fragments test suite."""

from __future__ import annotations

# Disable Rich colors and force wide terminal BEFORE any imports
# Rich checks these at import time
import os

os.environ["NO_COLOR"] = "1"
os.environ["TERM"] = "dumb"
os.environ["FORCE_COLOR"] = "0"
os.environ["COLUMNS"] = "200"  # Prevent text wrapping in CLI output

from collections.abc import Callable, Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest
import yaml

from fragments.config import CONFIG_ENV_VAR, reset_config
from fragments.dsl import CommandRunner, StepFactory, StepServices
from fragments.dsl.context import ExecutionContext
from fragments.store.sql import SqlInvocationLog, SqlModelStore
from fragments.telemetry import CommandTelemetry

# pylint: disable=redefined-outer-name


class FakeAIProvider:
    """AI provider returning canned replies and recording every call."""

    def __init__(self, replies: Sequence[Any] = ("ok",)) -> None:
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    def generate_text(
        self,
        prompt: str,
        history: Sequence[Mapping[str, str]],
        options: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        self.calls.append({"prompt": prompt, "history": list(history), "options": dict(options)})
        reply = self.replies[min(len(self.calls), len(self.replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        return {"content": reply}


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Keep the process-wide config away from the developer's files."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def store() -> SqlModelStore:
    """In-memory SQLite model store with every table created."""
    return SqlModelStore.from_url("sqlite://", create_tables=True)


@pytest.fixture
def ai_provider() -> FakeAIProvider:
    return FakeAIProvider()


@pytest.fixture
def services(store: SqlModelStore, ai_provider: FakeAIProvider) -> StepServices:
    """Services wired to the in-memory store, a fake AI provider and recording telemetry."""
    telemetry = CommandTelemetry(enabled=True)
    telemetry.keep_records = True
    services = StepServices(
        store=store,
        invocation_log=SqlInvocationLog(store.engine),
        ai_provider=ai_provider,
        telemetry=telemetry,
        settings={"ai": {"enabled": True, "cache_ttl": 60}, "jobs": {"default_queue": "default"}},
    )
    services.events.keep_history = True
    return services


@pytest.fixture
def factory(services: StepServices) -> StepFactory:
    return StepFactory(services)


@pytest.fixture
def runner(factory: StepFactory) -> CommandRunner:
    return CommandRunner(factory)


@pytest.fixture
def context() -> ExecutionContext:
    """Fresh context carrying a typical invocation."""
    return ExecutionContext.create({"user_id": 7, "command_slug": "todo", "body": "Call Bob tomorrow #work"})


@pytest.fixture
def write_pack(tmp_path: Path) -> Callable[..., Path]:
    """Write a command pack under ``tmp_path/packs`` and return the pack root."""
    root = tmp_path / "packs"

    def _write(slug: str, manifest: Any, prompts: Mapping[str, str] | None = None) -> Path:
        pack_dir = root / slug
        pack_dir.mkdir(parents=True, exist_ok=True)
        text = manifest if isinstance(manifest, str) else yaml.safe_dump(manifest, sort_keys=False)
        (pack_dir / "command.yaml").write_text(text, encoding="utf-8")
        for name, body in (prompts or {}).items():
            prompt_dir = pack_dir / "prompts"
            prompt_dir.mkdir(exist_ok=True)
            (prompt_dir / name).write_text(body, encoding="utf-8")
        return root

    return _write


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Configuration file using an in-memory store and no telemetry."""
    path = tmp_path / "test.conf.yml"
    data = {
        "engine": {"pack_paths": [str(tmp_path / "packs")]},
        "store": {"url": "sqlite://"},
        "telemetry": {"enabled": False},
        "ai": {"enabled": False},
    }
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


@pytest.fixture
def fake_provider_class() -> type[FakeAIProvider]:
    """The fake provider class, for tests that need custom replies."""
    return FakeAIProvider
