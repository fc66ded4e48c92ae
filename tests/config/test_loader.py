"""Tests for the configuration loader module.

Covers packaged defaults, user file discovery, deep merging, environment
variable expansion and the process-wide cache.
"""

# pylint: disable=protected-access,missing-function-docstring

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from box import Box

from fragments.config import (
    CONFIG_ENV_VAR,
    ConfigError,
    ConfigFileNotFoundError,
    ConfigFormatError,
    get_config,
    load_config,
    reset_config,
)
from fragments.config.loader import _deep_merge, _expand_env_vars


def _write(path: Path, data: object) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_packaged_defaults() -> None:
    config = load_config()
    assert isinstance(config, Box)
    assert config.engine.pack_cache_ttl == 3600
    assert config.telemetry.thresholds.very_slow == 3000
    assert config.jobs.default_queue == "default"
    assert config.tools.allowed == []


def test_default_placeholders(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FRAGMENTS_AI_BASE_URL", raising=False)
    monkeypatch.delenv("FRAGMENTS_AI_API_KEY", raising=False)
    config = load_config()
    assert config.ai.base_url == "https://api.openai.com/v1"
    assert config.ai.api_key == ""


def test_cwd_file_is_merged(tmp_path: Path) -> None:
    _write(tmp_path / "fragments.conf.yml", {"engine": {"slow_command_ms": 250}, "extra": {"flag": True}})
    config = load_config()
    assert config.engine.slow_command_ms == 250
    assert config.engine.pack_cache_ttl == 3600
    assert config.extra.flag is True


def test_env_var_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write(tmp_path / "fragments.conf.yml", {"ai": {"model": "from-cwd"}})
    custom = _write(tmp_path / "custom.yml", {"ai": {"model": "from-env"}})
    monkeypatch.setenv(CONFIG_ENV_VAR, str(custom))
    assert load_config().ai.model == "from-env"


def test_explicit_path_wins(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = _write(tmp_path / "env.yml", {"ai": {"model": "from-env"}})
    explicit = _write(tmp_path / "explicit.yml", {"ai": {"model": "explicit"}})
    monkeypatch.setenv(CONFIG_ENV_VAR, str(env_file))
    assert load_config(explicit).ai.model == "explicit"


def test_missing_explicit_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigFileNotFoundError, match="Config file not found"):
        load_config(tmp_path / "missing.yml")


def test_missing_file_is_file_not_found(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yml")


def test_invalid_yaml(tmp_path: Path) -> None:
    path = tmp_path / "broken.yml"
    path.write_text("engine: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigFormatError, match="Invalid YAML"):
        load_config(path)


def test_non_mapping(tmp_path: Path) -> None:
    path = _write(tmp_path / "list.yml", ["a", "b"])
    with pytest.raises(ConfigFormatError, match="must contain a mapping, got list"):
        load_config(path)


def test_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "empty.yml"
    path.write_text("", encoding="utf-8")
    assert load_config(path).engine.max_branch_depth == 8


def test_env_expansion(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FRAG_DB", "postgresql://db/frag")
    path = _write(tmp_path / "env.yml", {"store": {"url": "${FRAG_DB}"}, "paths": ["${FRAG_DB}/a"]})
    config = load_config(path)
    assert config.store.url == "postgresql://db/frag"
    assert config.paths == ["postgresql://db/frag/a"]


def test_missing_env_var(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FRAG_UNSET", raising=False)
    path = _write(tmp_path / "env.yml", {"store": {"url": "${FRAG_UNSET}"}})
    with pytest.raises(ConfigError, match="'FRAG_UNSET' is not set"):
        load_config(path)


def test_expand_env_vars_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FRAG_UNSET", raising=False)
    assert _expand_env_vars("x-${FRAG_UNSET:-y}-z") == "x-y-z"


def test_deep_merge_replaces_lists() -> None:
    merged = _deep_merge({"a": {"b": [1, 2], "c": 1}}, {"a": {"b": [3]}})
    assert merged == {"a": {"b": [3], "c": 1}}


def test_get_config_caches(tmp_path: Path) -> None:
    path = _write(tmp_path / "fragments.conf.yml", {"engine": {"slow_command_ms": 1}})
    first = get_config()
    _write(path, {"engine": {"slow_command_ms": 2}})
    assert get_config() is first
    assert get_config(force_reload=True).engine.slow_command_ms == 2


def test_reset_config(tmp_path: Path) -> None:
    first = get_config()
    reset_config()
    assert get_config() is not first
