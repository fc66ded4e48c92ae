"""``condition`` step: evaluate a condition and run the ``then`` or ``else`` branch.

Conditions are evaluated in two tiers. A condition that is a single
``{{ expr }}`` placeholder is handed to
:meth:`fragments.dsl.template.TemplateEngine.evaluate_condition`, which
resolves context paths. Any other condition is rendered first and then
matched against a small set of literal patterns:

1. ``<value> | length <op> <n>`` compares the length of the trimmed value
2. ``<left> <op> <right>`` with numeric coercion
3. ``true`` / ``false``
4. empty or ``null`` is false
5. anything else is true
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Mapping, Sequence
from typing import Any

from fragments.dsl.base import Step, render_step_config
from fragments.dsl.context import ExecutionContext, as_execution_context
from fragments.dsl.exceptions import StepConfigError
from fragments.dsl.models import StepDefinition
from fragments.dsl.template import compare_values
from fragments.dsl.validators import MAX_BRANCH_DEPTH
from fragments.utils import is_numeric, to_number

logger = logging.getLogger(__name__)

_SOLE_PLACEHOLDER = re.compile(r"^\s*\{\{\s*(.+?)\s*\}\}\s*$", re.DOTALL)
_LENGTH = re.compile(r"^(.*?)\s*\|\s*length\s*(==|!=|>=|<=|>|<)\s*(\d+)\s*$", re.DOTALL)
_COMPARISON = re.compile(r"^(.+?)\s*(==|!=|>=|<=|>|<)\s*(.+)$", re.DOTALL)

#: Context local holding the current branch nesting level.
DEPTH_KEY = "branch_depth"


def _operand(token: str) -> Any:
    value = token.strip().strip("\"'")
    return to_number(value) if is_numeric(value) else value


def evaluate_literal_condition(condition: str) -> bool:
    """Evaluate an already rendered condition string.

    Examples:
        >>> evaluate_literal_condition("5 > 3")
        True
        >>> evaluate_literal_condition("hello | length >= 5")
        True
        >>> evaluate_literal_condition("null")
        False
    """
    text = condition.strip()

    length = _LENGTH.match(text)
    if length:
        subject, op, size = length.groups()
        return compare_values(len(subject.strip()), op, int(size))

    comparison = _COMPARISON.match(text)
    if comparison:
        left, op, right = comparison.groups()
        return compare_values(_operand(left), op, _operand(right))

    if text == "true":
        return True
    if text == "false":
        return False
    if text in ("", "null"):
        return False
    return True


class ConditionStep(Step):
    """Branching step.

    Sub-steps run in order against a context that grows with each
    sub-step output, so later siblings can reference
    ``steps.<id>.output``. A failing sub-step is recorded as
    ``{id, type, success: False, error}`` and does not stop its siblings.
    Sub-step outputs stay inside this step's result.

    Examples:
        >>> from fragments.dsl.factory import StepFactory
        >>> step = StepFactory().create("condition")
        >>> result = step.execute({"condition": "5 > 3", "then": [], "else": []}, {})
        >>> result["condition_result"], result["executed_branch"]
        (True, 'then')
    """

    type_name = "condition"
    deferred_fields = ("condition", "then", "else")

    def validate(self, config: Mapping[str, Any]) -> bool:
        return bool(config.get("condition")) and ("then" in config or "else" in config)

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        condition = config.get("condition")
        if condition is None or condition == "":
            raise StepConfigError("condition step requires 'condition'")
        condition = str(condition)
        then_steps = self._branch(config, "then")
        else_steps = self._branch(config, "else")

        run_context = as_execution_context(context)
        depth = int(run_context.get(DEPTH_KEY) or 0) + 1
        max_depth = int(self.services.setting("engine.max_branch_depth", MAX_BRANCH_DEPTH))
        if depth > max_depth:
            raise StepConfigError(f"Branch nesting exceeds the maximum depth of {max_depth}")

        if dry_run:
            logger.info("[DRY RUN] condition %r", condition)
            return {
                "dry_run": True,
                "condition": condition,
                "would_evaluate": True,
                "then_steps_count": len(then_steps),
                "else_steps_count": len(else_steps),
            }

        started = time.perf_counter()
        rendered, result = self.evaluate(condition, run_context)
        branch = "then" if result else "else"
        self.services.telemetry.condition_evaluated(
            condition,
            result=result,
            branch=branch,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        logger.debug("Condition %r -> %s (%s branch)", condition, result, branch)

        chosen = then_steps if result else else_steps
        return {
            "condition": condition,
            "rendered_condition": rendered,
            "condition_result": result,
            "executed_branch": branch,
            "steps_executed": self.run_branch(chosen, run_context.with_locals(**{DEPTH_KEY: depth}), dry_run),
        }

    def evaluate(self, condition: str, context: Mapping[str, Any]) -> tuple[str, bool]:
        """Return the rendered condition and its boolean value."""
        engine = self.services.template
        sole = _SOLE_PLACEHOLDER.match(condition)
        if sole:
            expression = sole.group(1)
            return expression, engine.evaluate_condition(expression, context)
        rendered = engine.render(condition, context)
        return rendered, evaluate_literal_condition(rendered)

    def run_branch(
        self,
        steps: Sequence[Mapping[str, Any]],
        context: ExecutionContext,
        dry_run: bool,
    ) -> list[dict[str, Any]]:
        """Execute branch steps with partial-failure semantics."""
        factory = self.services.require_factory(self.type_name)
        executed: list[dict[str, Any]] = []
        for index, raw in enumerate(steps):
            outcome: dict[str, Any] = {
                "id": raw.get("id") if isinstance(raw, Mapping) else None,
                "type": raw.get("type", "unknown") if isinstance(raw, Mapping) else "unknown",
                "success": False,
                "output": None,
                "error": None,
            }
            try:
                definition = StepDefinition.parse(raw, index)
                outcome["id"] = definition.id
                step = factory.create(definition.type)
                deferred = getattr(step, "deferred_fields", ())
                rendered = render_step_config(self.services.template, definition.config, context, deferred)
                if not step.validate(rendered):
                    raise StepConfigError(f"Invalid configuration for step '{definition.id}' ({definition.type})")
                outcome["output"] = step.execute(rendered, context, dry_run=dry_run)
                outcome["success"] = True
                if definition.explicit_id and outcome["output"] is not None:
                    context = context.with_output(definition.id, outcome["output"])
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.warning("Branch step '%s' (%s) failed: %s", outcome["id"], outcome["type"], exc)
                outcome["error"] = str(exc)
            executed.append(outcome)
        return executed

    @staticmethod
    def _branch(config: Mapping[str, Any], name: str) -> list[Mapping[str, Any]]:
        steps = config.get(name) or []
        if isinstance(steps, Mapping):
            return [steps]
        if not isinstance(steps, (list, tuple)):
            raise StepConfigError(f"condition '{name}' must be a list of steps")
        return list(steps)


__all__ = [
    "ConditionStep",
    "evaluate_literal_condition",
]
