"""Fragments Engine: declarative slash-command step execution.

Commands are ordered lists of typed steps (conditions, transforms, model
operations, AI calls, tool calls) interpreted by :class:`CommandRunner`.

Examples:
    >>> from fragments import CommandRunner, StepFactory
    >>> runner = CommandRunner(StepFactory())
    >>> result = runner.execute_steps(
    ...     [{"type": "transform", "id": "hello", "template": "Hi {{ ctx.name }}"}],
    ...     {"name": "Ada"},
    ... )  # doctest: +SKIP
"""

from fragments.dsl import CommandRunner, ExecutionContext, StepFactory, TemplateEngine
from fragments.exceptions import FragmentsError
from fragments.meta import __version__

__all__ = [
    "CommandRunner",
    "ExecutionContext",
    "FragmentsError",
    "StepFactory",
    "TemplateEngine",
    "__version__",
]
