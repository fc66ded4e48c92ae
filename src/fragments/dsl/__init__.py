"""Command DSL: steps, factory, template engine and runner.

A command is an ordered list of typed step declarations. The runner builds
each step through the :class:`StepFactory`, renders its ``{{ }}``
placeholders against the :class:`ExecutionContext`, executes it and records
its output under ``steps.<id>.output`` for later steps.

Examples:
    Run an ad-hoc step list:

    >>> from fragments.dsl import CommandRunner, StepFactory
    >>> runner = CommandRunner(StepFactory())
    >>> result = runner.execute_steps(
    ...     [
    ...         {"type": "transform", "id": "upper", "template": "{{ ctx.word | upper }}"},
    ...         {"type": "condition", "condition": "{{ steps.upper.output == 'HI' }}", "then": []},
    ...     ],
    ...     {"word": "hi"},
    ... )  # doctest: +SKIP

    Run a command pack from the configured search paths:

    >>> runner = CommandRunner.from_config()  # doctest: +SKIP
    >>> result = runner.execute("todo", {"body": "Call Bob tomorrow #work"})  # doctest: +SKIP
"""

from fragments.dsl.base import AbstractStep, Step, render_step_config
from fragments.dsl.context import ExecutionContext
from fragments.dsl.exceptions import (
    AIDisabledError,
    CommandNotFoundError,
    DslError,
    ExternalCallError,
    OutputShapeError,
    StepConfigError,
    StepExecutionError,
    StepValidationError,
    TemplateRenderError,
    TemplateSyntaxError,
    UnknownStepTypeError,
)
from fragments.dsl.factory import StepFactory, StepServices
from fragments.dsl.loader import CommandPack, CommandPackLoader
from fragments.dsl.models import CommandResult, StepDefinition, StepOutcome
from fragments.dsl.runner import CommandRunner
from fragments.dsl.template import TemplateEngine

__all__ = [
    "AIDisabledError",
    "AbstractStep",
    "CommandNotFoundError",
    "CommandPack",
    "CommandPackLoader",
    "CommandResult",
    "CommandRunner",
    "DslError",
    "ExecutionContext",
    "ExternalCallError",
    "OutputShapeError",
    "Step",
    "StepConfigError",
    "StepDefinition",
    "StepExecutionError",
    "StepFactory",
    "StepOutcome",
    "StepServices",
    "StepValidationError",
    "TemplateEngine",
    "TemplateRenderError",
    "TemplateSyntaxError",
    "UnknownStepTypeError",
    "render_step_config",
]
