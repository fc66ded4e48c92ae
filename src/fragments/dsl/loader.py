"""Command pack loader.

A command pack is a directory ``<search path>/<slug>/`` holding a
``command.yaml`` manifest and an optional ``prompts/`` directory of text
files. Manifests are parsed with ``yaml.safe_load`` and cached with a TTL.

Manifest layout::

    name: Todo
    description: Create a todo from free text
    triggers:
      slash: /todo
    steps:
      - type: text.parse
        id: parsed
        with:
          input: "{{ ctx.body }}"
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from fragments.cache.strategies import TTLCacheStrategy
from fragments.dsl.exceptions import CommandNotFoundError, StepConfigError
from fragments.dsl.validators import MAX_COMMAND_STEPS, STEP_ID_PATTERN

logger = logging.getLogger(__name__)

#: Manifest file name inside a pack directory.
MANIFEST_NAME = "command.yaml"

#: Prompt directory inside a pack directory.
PROMPTS_DIR = "prompts"

#: Default pack lifetime in the loader cache (seconds).
DEFAULT_PACK_TTL = 3600


def steps_hash(steps: Sequence[Any]) -> str:
    """Return the sha256 of the canonical JSON encoding of ``steps``.

    Examples:
        >>> steps_hash([{"type": "notify"}]) == steps_hash([{"type": "notify"}])
        True
        >>> len(steps_hash([]))
        64
    """
    canonical = json.dumps(list(steps), sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class CommandPack:
    """A loaded command pack.

    Attributes:
        slug: Directory name and command identifier.
        manifest: Parsed ``command.yaml``.
        source_path: Pack directory.
        prompts: Prompt texts keyed by file stem.
        steps_hash: Fingerprint of the step list.
    """

    slug: str
    manifest: Mapping[str, Any]
    source_path: Path
    prompts: Mapping[str, str] = field(default_factory=dict)
    steps_hash: str = ""

    @property
    def name(self) -> str:
        return str(self.manifest.get("name") or self.slug)

    @property
    def description(self) -> str:
        return str(self.manifest.get("description") or "")

    @property
    def slash(self) -> str | None:
        triggers = self.manifest.get("triggers") or {}
        slash = triggers.get("slash") if isinstance(triggers, Mapping) else None
        return str(slash) if slash else None

    @property
    def steps(self) -> list[Any]:
        return list(self.manifest.get("steps") or [])


class CommandPackLoader:
    """Locate, parse and cache command packs.

    Args:
        search_paths: Directories scanned in order; the first pack found wins.
        ttl: Cache lifetime of a parsed pack in seconds.

    Examples:
        >>> loader = CommandPackLoader(["/nonexistent"])
        >>> loader.list_packs()
        []
        >>> loader.load("todo")
        Traceback (most recent call last):
            ...
        fragments.dsl.exceptions.CommandNotFoundError: Command pack not found: todo
    """

    def __init__(self, search_paths: Iterable[str | Path] = (), ttl: float = DEFAULT_PACK_TTL) -> None:
        self.search_paths = [Path(path).expanduser() for path in search_paths]
        self._cache = TTLCacheStrategy(ttl=ttl, max_entries=256)

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> CommandPackLoader:
        """Build a loader from the ``engine`` configuration section."""
        if config is None:
            from fragments.config import get_config  # pylint: disable=import-outside-toplevel

            config = get_config()
        engine = config.get("engine") or {}
        paths = engine.get("pack_paths") or []
        if isinstance(paths, str):
            paths = [paths]
        return cls(paths, ttl=float(engine.get("pack_cache_ttl") or DEFAULT_PACK_TTL))

    def find(self, slug: str) -> Path | None:
        """Return the directory of pack ``slug`` or None."""
        for base in self.search_paths:
            candidate = base / slug
            if (candidate / MANIFEST_NAME).is_file():
                return candidate
        return None

    def load(self, slug: str) -> CommandPack:
        """Return the pack ``slug``, from cache when fresh.

        Raises:
            CommandNotFoundError: If no search path holds the pack.
            StepConfigError: If the manifest is invalid YAML or has no ``steps`` list.
        """
        slug = slug.lstrip("/")
        if not STEP_ID_PATTERN.fullmatch(slug):
            raise CommandNotFoundError(slug)
        cached = self._cache.get(slug)
        if cached is not None:
            return cached

        directory = self.find(slug)
        if directory is None:
            raise CommandNotFoundError(slug)
        manifest = self._read_manifest(slug, directory / MANIFEST_NAME)
        pack = CommandPack(
            slug=slug,
            manifest=MappingProxyType(manifest),
            source_path=directory,
            prompts=MappingProxyType(self._read_prompts(directory / PROMPTS_DIR)),
            steps_hash=steps_hash(manifest["steps"]),
        )
        self._cache.set(slug, pack)
        logger.debug("Loaded command pack '%s' from %s (%d steps)", slug, directory, len(pack.steps))
        return pack

    def list_packs(self) -> list[str]:
        """Return the slugs of every pack in the search paths."""
        slugs: set[str] = set()
        for base in self.search_paths:
            if not base.is_dir():
                continue
            for child in base.iterdir():
                if (child / MANIFEST_NAME).is_file():
                    slugs.add(child.name)
        return sorted(slugs)

    def clear_cache(self, slug: str | None = None) -> None:
        """Forget one cached pack, or all of them."""
        if slug is None:
            self._cache.clear()
        else:
            self._cache.delete(slug)

    @staticmethod
    def _read_manifest(slug: str, path: Path) -> dict[str, Any]:
        try:
            with path.open(encoding="utf-8") as handle:
                data = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise StepConfigError(f"Command '{slug}': invalid YAML in {path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise StepConfigError(f"Command '{slug}': manifest must be a mapping")
        steps = data.get("steps")
        if not isinstance(steps, list) or not steps:
            raise StepConfigError(f"Command '{slug}': 'steps' must be a non-empty list")
        if len(steps) > MAX_COMMAND_STEPS:
            raise StepConfigError(f"Command '{slug}': too many steps (max {MAX_COMMAND_STEPS})")
        return dict(data)

    @staticmethod
    def _read_prompts(directory: Path) -> dict[str, str]:
        if not directory.is_dir():
            return {}
        return {
            path.stem: path.read_text(encoding="utf-8")
            for path in sorted(directory.iterdir())
            if path.is_file() and not path.name.startswith(".")
        }


__all__ = [
    "CommandPack",
    "CommandPackLoader",
    "steps_hash",
]
