"""Store abstractions consumed by the CRUD and tool-call steps."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class Predicate:
    """One query condition.

    Attributes:
        field: Column name, or ``column.json.path`` for JSON columns.
        operator: Allow-listed, upper-case operator.
        value: Comparison value (list for IN / NOT IN, unused for IS NULL).
    """

    field: str
    operator: str = "="
    value: Any = None


@dataclass(frozen=True, slots=True)
class Ordering:
    """One ORDER BY term."""

    field: str
    direction: str = "desc"


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    """Audit record of a tool call."""

    id: str
    tool_slug: str
    status: str
    duration_ms: float
    request: Mapping[str, Any] = field(default_factory=dict)
    response: Any = None
    user_id: int | None = None
    command_slug: str | None = None
    fragment_id: int | None = None


@runtime_checkable
class ModelStore(Protocol):
    """CRUD access to allow-listed models."""

    def query(
        self,
        model: str,
        *,
        predicates: Sequence[Predicate] = (),
        search: str | None = None,
        order: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int = 0,
        relations: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        """Return live records matching every predicate."""
        ...

    def find(self, model: str, record_id: Any) -> dict[str, Any] | None:
        """Return one live record or None."""
        ...

    def create(self, model: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a record and return it."""
        ...

    def update(self, model: str, record_id: Any, data: Mapping[str, Any]) -> dict[str, Any]:
        """Update a live record and return it."""
        ...

    def delete(self, model: str, record_id: Any, *, soft: bool = True) -> None:
        """Soft- or hard-delete a live record."""
        ...


@runtime_checkable
class InvocationLog(Protocol):
    """Persistence for tool-call audit records."""

    def record(self, invocation: ToolInvocation) -> None:
        """Persist one invocation."""
        ...


__all__ = [
    "InvocationLog",
    "ModelStore",
    "Ordering",
    "Predicate",
    "ToolInvocation",
]
