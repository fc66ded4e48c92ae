"""Data models for the fragments.dsl module.

- StepDefinition: Parsed, immutable step declaration from a command pack
- StepOutcome: Result of one step as recorded by the orchestrator
- CommandResult: Aggregate result of a command run
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from fragments.dsl.exceptions import StepConfigError
from fragments.dsl.validators import validate_step_id, validate_step_type

if TYPE_CHECKING:
    from fragments.dsl.context import ExecutionContext


def generate_step_id() -> str:
    """Return an id for steps declared without one."""
    return f"step-{secrets.token_hex(6)}"


@dataclass(frozen=True, slots=True)
class StepDefinition:
    """A single step declaration.

    Attributes:
        type: Registry key of the step (e.g. ``model.query``).
        id: Step id; outputs are recorded as ``steps.<id>.output``.
        config: The full declaration mapping, passed to ``Step.execute``.
        explicit_id: Whether the author declared the id.

    Examples:
        >>> definition = StepDefinition.parse({"type": "notify", "id": "ping"})
        >>> definition.id, definition.type
        ('ping', 'notify')
    """

    type: str
    id: str
    config: Mapping[str, Any]
    explicit_id: bool = True

    @classmethod
    def parse(cls, raw: Any, index: int = 0) -> StepDefinition:
        """Parse a raw mapping into a StepDefinition.

        Raises:
            StepConfigError: If the declaration is not a mapping or lacks a valid type.
        """
        if not isinstance(raw, Mapping):
            raise StepConfigError(f"Step {index} must be a mapping, got {type(raw).__name__}")
        step_type = raw.get("type")
        if not step_type:
            raise StepConfigError(f"Step {index} missing 'type'")
        validate_step_type(step_type)
        raw_id = raw.get("id")
        if raw_id is None or raw_id == "":
            return cls(type=step_type, id=generate_step_id(), config=MappingProxyType(dict(raw)), explicit_id=False)
        return cls(type=step_type, id=validate_step_id(str(raw_id)), config=MappingProxyType(dict(raw)))


@dataclass(slots=True)
class StepOutcome:
    """Result of a single step execution.

    Attributes:
        id: Step id.
        type: Step type.
        success: Whether the step completed without raising.
        output: Value returned by the step.
        error: Error message when the step raised.
        duration_ms: Wall-clock duration in milliseconds.
    """

    id: str
    type: str
    success: bool
    output: Any = None
    error: str | None = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Return the outcome as a plain mapping."""
        return {
            "id": self.id,
            "type": self.type,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass(slots=True)
class CommandResult:
    """Aggregate result of a command run.

    Attributes:
        slug: Command slug (``None`` for ad-hoc step lists).
        dry_run: Whether the run was simulated.
        steps: Outcomes in execution order.
        error: Message of the step that aborted the run.
        performance: ``total_duration_ms``, ``step_count``, ``avg_step_duration_ms``.
        context: Final execution context.
    """

    slug: str | None
    dry_run: bool = False
    steps: list[StepOutcome] = field(default_factory=list)
    error: str | None = None
    performance: dict[str, float] = field(default_factory=dict)
    context: ExecutionContext | None = None

    @property
    def success(self) -> bool:
        """True if every executed step succeeded."""
        return self.error is None and all(step.success for step in self.steps)

    @property
    def outputs(self) -> dict[str, Any]:
        """Outputs keyed by step id."""
        return {step.id: step.output for step in self.steps if step.success}

    @property
    def failed_step(self) -> StepOutcome | None:
        """The step that aborted the run, if any."""
        return next((step for step in self.steps if not step.success), None)

    def to_dict(self) -> dict[str, Any]:
        """Return the result as a plain mapping."""
        return {
            "command": self.slug,
            "success": self.success,
            "dry_run": self.dry_run,
            "error": self.error,
            "steps": [step.to_dict() for step in self.steps],
            "performance": dict(self.performance),
        }


__all__ = [
    "CommandResult",
    "StepDefinition",
    "StepOutcome",
    "generate_step_id",
]
