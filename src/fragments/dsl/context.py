"""Execution context threaded through a command run.

The context is an immutable-append log: steps read it as a mapping, and
only the orchestrator (command runner or conditional step) derives a new
context by appending a step's output under its id.
"""

from __future__ import annotations

import copy
import os
import secrets
import time
import uuid
from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from fragments.dsl.exceptions import StepConfigError

_CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def new_ulid() -> str:
    """Return a 26-character lexicographically sortable identifier.

    Examples:
        >>> len(new_ulid())
        26
    """
    value = (int(time.time() * 1000) << 80) | int.from_bytes(os.urandom(10), "big")
    chars = []
    for _ in range(26):
        value, index = divmod(value, 32)
        chars.append(_CROCKFORD[index])
    return "".join(reversed(chars))


class ExecutionContext(Mapping[str, Any]):
    """Read-only view of the data available to a step.

    Keys:
        ctx: Invocation data (user, fragment id, command slug, session id).
        env: Environment values exposed to templates.
        steps: ``{step_id: {"output": value}}`` for steps run so far.
        now, uuid, ulid: Per-run values.
        prompts: Prompt texts shipped with the command pack.

    Iteration steps add transient locals (``item``, ``index``, ``current``)
    through :meth:`with_locals`; they never reach the parent context.

    Examples:
        >>> context = ExecutionContext.create({"user_id": 7})
        >>> context["ctx"]["user_id"]
        7
        >>> later = context.with_output("lookup", {"count": 2})
        >>> later["steps"]["lookup"]["output"]["count"]
        2
        >>> "lookup" in context["steps"]
        False
    """

    __slots__ = ("_base", "_locals", "_steps")

    def __init__(
        self,
        base: Mapping[str, Any],
        steps: Mapping[str, Mapping[str, Any]] | None = None,
        local_values: Mapping[str, Any] | None = None,
    ) -> None:
        self._base = dict(base)
        self._steps = dict(steps or {})
        self._locals = dict(local_values or {})

    @classmethod
    def create(
        cls,
        ctx: Mapping[str, Any] | None = None,
        *,
        env: Mapping[str, Any] | None = None,
        prompts: Mapping[str, str] | None = None,
    ) -> ExecutionContext:
        """Seed a context at the start of a command run."""
        base = {
            "ctx": copy.deepcopy(dict(ctx or {})),
            "env": dict(env or {}),
            "now": datetime.now(timezone.utc).isoformat(),
            "uuid": str(uuid.uuid4()),
            "ulid": new_ulid(),
            "prompts": dict(prompts or {}),
            "run_id": secrets.token_hex(8),
        }
        return cls(base)

    # ------------------------------------------------------------------
    # Mapping protocol
    # ------------------------------------------------------------------

    def __getitem__(self, key: str) -> Any:
        if key in self._locals:
            return self._locals[key]
        if key == "steps":
            return MappingProxyType(self._steps)
        return self._base[key]

    def __iter__(self) -> Iterator[str]:
        seen = set(self._locals)
        yield from self._locals
        for key in ("steps", *self._base):
            if key not in seen:
                seen.add(key)
                yield key

    def __len__(self) -> int:
        return len(set(self._locals) | set(self._base) | {"steps"})

    def __repr__(self) -> str:
        return f"ExecutionContext(steps={sorted(self._steps)!r}, locals={sorted(self._locals)!r})"

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    @property
    def step_ids(self) -> tuple[str, ...]:
        """Ids of recorded step outputs, in execution order."""
        return tuple(self._steps)

    def with_output(self, step_id: str, output: Any) -> ExecutionContext:
        """Return a new context with ``output`` recorded under ``step_id``.

        Raises:
            StepConfigError: If ``step_id`` already holds an output.
        """
        if step_id in self._steps:
            raise StepConfigError(f"Duplicate step id: '{step_id}' already has a recorded output")
        steps = dict(self._steps)
        steps[step_id] = {"output": copy.deepcopy(output)}
        return ExecutionContext(self._base, steps, self._locals)

    def with_locals(self, **values: Any) -> ExecutionContext:
        """Return a new context with transient iteration values."""
        return ExecutionContext(self._base, self._steps, {**self._locals, **values})

    def to_dict(self) -> dict[str, Any]:
        """Return a deep, mutable copy of the whole context."""
        data = copy.deepcopy(self._base)
        data["steps"] = copy.deepcopy(self._steps)
        data.update(copy.deepcopy(self._locals))
        return data


def as_execution_context(context: Mapping[str, Any]) -> ExecutionContext:
    """Wrap a plain mapping so it can be derived like a run context.

    Examples:
        >>> wrapped = as_execution_context({"ctx": {}, "steps": {"a": {"output": 1}}})
        >>> wrapped.step_ids
        ('a',)
    """
    if isinstance(context, ExecutionContext):
        return context
    base = {key: value for key, value in context.items() if key != "steps"}
    return ExecutionContext(base, context.get("steps") or {})


__all__ = [
    "ExecutionContext",
    "as_execution_context",
    "new_ulid",
]
