"""Command runner for sequential step execution.

Provides the ``CommandRunner`` class that executes the steps of a command
pack (or an ad-hoc step list) in order, threading an immutable-append
execution context from one step to the next.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

from fragments.dsl.base import render_step_config
from fragments.dsl.context import ExecutionContext
from fragments.dsl.exceptions import StepConfigError
from fragments.dsl.factory import StepFactory
from fragments.dsl.loader import CommandPackLoader
from fragments.dsl.models import CommandResult, StepDefinition, StepOutcome
from fragments.dsl.validators import MAX_COMMAND_STEPS

logger = logging.getLogger(__name__)

#: Commands slower than this log a warning (milliseconds).
DEFAULT_SLOW_COMMAND_MS = 1000


class CommandRunner:
    """Execute commands step by step.

    Each step declaration is parsed, its string fields are rendered against
    the current context (except the step's deferred fields), and the step
    is validated and executed. A step declared with an ``id`` that returns
    a non-None value extends the context with ``steps.<id>.output``.

    The first failing step aborts the run. The failure is recorded in the
    returned :class:`CommandResult` instead of being raised.

    Args:
        factory: Step factory (and through it, the shared services).
        loader: Command pack loader, required by :meth:`execute`.

    Examples:
        >>> runner = CommandRunner(StepFactory())
        >>> result = runner.execute_steps(
        ...     [{"type": "transform", "id": "greeting", "template": "Hi {{ ctx.name }}"}],
        ...     {"name": "Ada"},
        ... )
        >>> result.success, result.outputs["greeting"]
        (True, 'Hi Ada')
    """

    def __init__(self, factory: StepFactory, loader: CommandPackLoader | None = None) -> None:
        """Initialize CommandRunner.

        Args:
            factory: Step factory used to build every step.
            loader: Command pack loader.
        """
        self._factory = factory
        self._loader = loader

    @property
    def factory(self) -> StepFactory:
        return self._factory

    @property
    def loader(self) -> CommandPackLoader | None:
        return self._loader

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> CommandRunner:
        """Create a runner whose factory, services and loader come from configuration.

        Examples:
            >>> runner = CommandRunner.from_config()  # doctest: +SKIP
        """
        if config is None:
            from fragments.config import get_config  # pylint: disable=import-outside-toplevel

            config = get_config()
        return cls(StepFactory.from_config(config), CommandPackLoader.from_config(config))

    def execute(
        self,
        slug: str,
        ctx: Mapping[str, Any] | None = None,
        *,
        dry_run: bool = False,
    ) -> CommandResult:
        """Load the pack ``slug`` and run its steps.

        Args:
            slug: Command slug (a leading ``/`` is ignored).
            ctx: Invocation data exposed as ``ctx.*``.
            dry_run: Simulate every step without side effects.

        Raises:
            StepConfigError: If no loader is configured or the manifest is invalid.
            CommandNotFoundError: If the pack does not exist.
        """
        if self._loader is None:
            raise StepConfigError("CommandRunner.execute requires a command pack loader")
        pack = self._loader.load(slug)
        invocation = {"command_slug": pack.slug, **dict(ctx or {})}
        return self.execute_steps(
            pack.steps,
            invocation,
            slug=pack.slug,
            dry_run=dry_run,
            prompts=pack.prompts,
        )

    def execute_steps(
        self,
        steps: Sequence[Any],
        ctx: Mapping[str, Any] | ExecutionContext | None = None,
        *,
        slug: str | None = None,
        dry_run: bool = False,
        prompts: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a raw step list.

        Args:
            steps: Step declarations.
            ctx: Invocation data, or an existing context to continue from.
            slug: Command slug for logs and telemetry.
            dry_run: Simulate every step without side effects.
            prompts: Prompt texts exposed as ``prompts.*``.

        Raises:
            StepConfigError: If the list holds more than the allowed number of steps.
        """
        if len(steps) > MAX_COMMAND_STEPS:
            raise StepConfigError(f"Too many steps: {len(steps)} (max {MAX_COMMAND_STEPS})")
        if isinstance(ctx, ExecutionContext):
            context = ctx
        else:
            context = ExecutionContext.create(ctx, prompts=prompts)

        services = self._factory.services
        telemetry = services.telemetry
        result = CommandResult(slug=slug, dry_run=dry_run)
        label = slug or "(inline)"
        logger.info(
            "Command '%s' started (%d steps%s)",
            label,
            len(steps),
            ", dry_run=True" if dry_run else "",
        )
        start = time.perf_counter()

        for index, raw in enumerate(steps):
            outcome, context = self._run_step(raw, index, context, dry_run=dry_run)
            result.steps.append(outcome)
            logger.info(
                "Step '%s' (%s) -> %s (%.2fms)",
                outcome.id,
                outcome.type,
                "ok" if outcome.success else "failed",
                outcome.duration_ms,
            )
            if not outcome.success:
                result.error = outcome.error
                logger.error("Command '%s' aborted at step '%s': %s", label, outcome.id, outcome.error)
                break

        total_ms = (time.perf_counter() - start) * 1000
        count = len(result.steps)
        result.performance = {
            "total_duration_ms": round(total_ms, 2),
            "step_count": count,
            "avg_step_duration_ms": round(total_ms / count, 2) if count else 0.0,
        }
        result.context = context

        slow_ms = float(services.setting("engine.slow_command_ms", DEFAULT_SLOW_COMMAND_MS))
        if total_ms > slow_ms:
            logger.warning("Slow command '%s': %.0fms for %d steps", label, total_ms, count)
        telemetry.command_completed(slug, success=result.success, performance=result.performance)
        logger.info("Command '%s' completed in %.2fms (success=%s)", label, total_ms, result.success)
        return result

    def _run_step(
        self,
        raw: Any,
        index: int,
        context: ExecutionContext,
        *,
        dry_run: bool,
    ) -> tuple[StepOutcome, ExecutionContext]:
        """Execute one declaration and return its outcome with the next context."""
        telemetry = self._factory.services.telemetry
        step_type = raw.get("type", "unknown") if isinstance(raw, Mapping) else "unknown"
        outcome = StepOutcome(id=f"#{index}", type=str(step_type), success=False)
        start = time.perf_counter()
        try:
            definition = StepDefinition.parse(raw, index)
            outcome.id = definition.id
            telemetry.step_started(definition.id, definition.type)
            step = self._factory.create(definition.type)
            deferred = getattr(step, "deferred_fields", ())
            config = render_step_config(self._factory.services.template, definition.config, context, deferred)
            if not step.validate(config):
                raise StepConfigError(f"Invalid configuration for step '{definition.id}' ({definition.type})")
            outcome.output = step.execute(config, context, dry_run=dry_run)
            outcome.success = True
            if definition.explicit_id and outcome.output is not None:
                context = context.with_output(definition.id, outcome.output)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.exception("Step '%s' (%s) failed", outcome.id, outcome.type)
            outcome.success = False
            outcome.error = str(exc)
        outcome.duration_ms = round((time.perf_counter() - start) * 1000, 2)
        telemetry.step_completed(
            outcome.id,
            outcome.type,
            success=outcome.success,
            duration_ms=outcome.duration_ms,
            error=outcome.error,
        )
        return outcome, context


__all__ = [
    "CommandRunner",
]
