"""Specialized exceptions raised by the fragments.dsl module.

Exception hierarchy::

    FragmentsError
        DslError (base for all DSL errors)
            StepConfigError (invalid step or command configuration, also ValueError)
                UnknownStepTypeError (type string not registered)
                TemplateSyntaxError (malformed template block)
            CommandNotFoundError (no pack for the slug, also LookupError)
            StepExecutionError (step failed while running)
                StepValidationError (aggregated domain rule violations)
                ExternalCallError (AI provider or tool failure)
                OutputShapeError (unparseable step output)
                AIDisabledError (AI feature flag is off)
"""

from __future__ import annotations

from fragments.exceptions import FragmentsError


class DslError(FragmentsError):
    """Base exception for all command DSL errors."""


class StepConfigError(DslError, ValueError):
    """A step or command definition is invalid.

    Raised before any side effect, for missing required fields,
    unknown models, disallowed fields or operators.
    """


class UnknownStepTypeError(StepConfigError):
    """No step class is registered for a type string.

    Attributes:
        step_type: The type string that was requested.
    """

    def __init__(self, step_type: str) -> None:
        """Initialize UnknownStepTypeError.

        Args:
            step_type: The unregistered type string.
        """
        super().__init__(f"Unknown step type: {step_type}")
        self.step_type = step_type


class TemplateSyntaxError(StepConfigError):
    """A template or expression cannot be parsed."""


class TemplateRenderError(StepConfigError):
    """A template failed while rendering, for example on a sandbox violation."""


class CommandNotFoundError(DslError, LookupError):
    """No command pack exists for a slug.

    Attributes:
        slug: The requested command slug.
    """

    def __init__(self, slug: str) -> None:
        """Initialize CommandNotFoundError.

        Args:
            slug: The requested command slug.
        """
        super().__init__(f"Command pack not found: {slug}")
        self.slug = slug


class StepExecutionError(DslError):
    """A step failed during execution.

    Attributes:
        step_type: Registry key of the failing step.
        reason: Description of the failure.
    """

    def __init__(self, step_type: str, reason: str) -> None:
        """Initialize StepExecutionError.

        Args:
            step_type: Registry key of the failing step.
            reason: Description of the failure.
        """
        super().__init__(f"Step '{step_type}' failed: {reason}")
        self.step_type = step_type
        self.reason = reason


class StepValidationError(StepExecutionError):
    """Domain validation rejected the step input.

    Attributes:
        errors: Individual rule violations, in evaluation order.
    """

    def __init__(self, step_type: str, errors: list[str]) -> None:
        """Initialize StepValidationError.

        Args:
            step_type: Registry key of the failing step.
            errors: Individual rule violations.
        """
        super().__init__(step_type, "Validation failed: " + ", ".join(errors))
        self.errors = list(errors)


class ExternalCallError(StepExecutionError):
    """An external collaborator (AI provider, tool) failed."""


class OutputShapeError(StepExecutionError):
    """A step produced output that does not match the expected shape."""


class AIDisabledError(StepExecutionError):
    """AI generation was requested while the feature is disabled."""

    def __init__(self) -> None:
        """Initialize AIDisabledError."""
        super().__init__("ai.generate", "AI generation is disabled")


__all__ = [
    "AIDisabledError",
    "CommandNotFoundError",
    "DslError",
    "ExternalCallError",
    "OutputShapeError",
    "StepConfigError",
    "StepExecutionError",
    "StepValidationError",
    "TemplateRenderError",
    "TemplateSyntaxError",
    "UnknownStepTypeError",
]
