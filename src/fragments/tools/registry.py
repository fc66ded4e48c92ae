"""Registry of callable tools exposed to the ``tool.call`` step."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from fragments.tools.exceptions import ToolArgumentError, ToolNotFoundError

logger = logging.getLogger(__name__)

#: JSON-schema type name -> accepted Python types.
_SCHEMA_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict, Mapping),
}


@runtime_checkable
class Tool(Protocol):
    """A capability callable from a command."""

    slug: str
    description: str
    schema: Mapping[str, Any]

    def call(self, args: Mapping[str, Any], context: Mapping[str, Any]) -> Any:
        """Run the tool with validated arguments and the invocation context."""
        ...


@dataclass(frozen=True, slots=True)
class FunctionTool:
    """Adapt a plain function ``func(args, context)`` into a Tool.

    Examples:
        >>> echo = FunctionTool("echo", lambda args, ctx: args["text"], schema={"required": ["text"]})
        >>> echo.call({"text": "hi"}, {})
        'hi'
    """

    slug: str
    func: Callable[[Mapping[str, Any], Mapping[str, Any]], Any]
    description: str = ""
    schema: Mapping[str, Any] = field(default_factory=dict)

    def call(self, args: Mapping[str, Any], context: Mapping[str, Any]) -> Any:
        return self.func(args, context)


class ToolRegistry:
    """Hold tools and the allow-list that gates them.

    Args:
        allowed: Allowed slugs; ``"*"`` allows every registered tool.
            ``None`` or empty denies all.

    Examples:
        >>> registry = ToolRegistry(allowed=["echo"])
        >>> registry.register(FunctionTool("echo", lambda a, c: a))
        >>> registry.exists("echo"), registry.allowed("echo"), registry.allowed("rm")
        (True, True, False)
    """

    def __init__(self, allowed: Iterable[str] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        self._allowed = frozenset(allowed or ())

    def register(self, tool: Tool) -> None:
        """Register (or replace) a tool under its slug."""
        if tool.slug in self._tools:
            logger.debug("Replacing tool '%s'", tool.slug)
        self._tools[tool.slug] = tool

    def get(self, slug: str) -> Tool:
        """Return a tool.

        Raises:
            ToolNotFoundError: If the slug is not registered.
        """
        try:
            return self._tools[slug]
        except KeyError:
            raise ToolNotFoundError(slug) from None

    def exists(self, slug: str) -> bool:
        return slug in self._tools

    def allowed(self, slug: str) -> bool:
        """Return True when policy allows calling ``slug``."""
        return "*" in self._allowed or slug in self._allowed

    def all(self) -> dict[str, Tool]:
        return dict(self._tools)

    def validate_args(self, slug: str, args: Mapping[str, Any]) -> bool:
        """Check ``args`` against the tool's ``required`` and ``properties``.

        Raises:
            ToolNotFoundError: If the slug is not registered.
            ToolArgumentError: On any violation.
        """
        schema = self.get(slug).schema or {}
        errors = [f"missing required argument '{name}'" for name in schema.get("required", ()) if name not in args]
        for name, spec in (schema.get("properties") or {}).items():
            if name not in args or not isinstance(spec, Mapping):
                continue
            expected = _SCHEMA_TYPES.get(str(spec.get("type", "")))
            value = args[name]
            if expected is None:
                continue
            if isinstance(value, bool) and bool not in expected:
                errors.append(f"argument '{name}' must be {spec['type']}")
            elif not isinstance(value, expected):
                errors.append(f"argument '{name}' must be {spec['type']}")
        if errors:
            raise ToolArgumentError(slug, errors)
        return True

    def capabilities(self) -> dict[str, dict[str, Any]]:
        """Describe every registered tool for tooling and UIs."""
        return {
            slug: {
                "description": tool.description,
                "schema": dict(tool.schema or {}),
                "allowed": self.allowed(slug),
            }
            for slug, tool in sorted(self._tools.items())
        }


__all__ = [
    "FunctionTool",
    "Tool",
    "ToolRegistry",
]
