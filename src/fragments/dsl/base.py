"""Step protocol and base class.

Every step type exposes ``get_type``, ``validate`` and ``execute``. Concrete
steps subclass :class:`Step`, which receives the shared services from the
factory.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

from fragments.dsl.exceptions import StepConfigError

if TYPE_CHECKING:
    from fragments.dsl.factory import StepServices
    from fragments.dsl.template import TemplateEngine


@runtime_checkable
class AbstractStep(Protocol):
    """Protocol defining the interface of a DSL step.

    Examples:
        >>> def run(step: AbstractStep, config: dict, context: dict) -> object:
        ...     if not step.validate(config):
        ...         raise ValueError(step.get_type())
        ...     return step.execute(config, context, dry_run=True)
    """

    def get_type(self) -> str:
        """Return the registry key of the step."""
        ...

    def validate(self, config: Mapping[str, Any]) -> bool:
        """Return True when ``config`` satisfies the structural preconditions."""
        ...

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> Any:
        """Execute the step.

        Args:
            config: Step declaration (``type``, ``id``, ``with`` and inline fields).
            context: Read-only execution context.
            dry_run: If True, describe the effect without performing it.

        Returns:
            Step result (mapping, list or scalar depending on the step).
        """
        ...


class Step:
    """Base class for built-in steps.

    Attributes:
        type_name: Registry key, overridden by every subclass.
        deferred_fields: Dotted config paths the orchestrator must leave
            unrendered; the step renders them itself against a derived
            context (branch steps, per-item templates).
    """

    type_name: ClassVar[str] = ""
    deferred_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(self, services: StepServices) -> None:
        self.services = services

    def get_type(self) -> str:
        return self.type_name

    def validate(self, config: Mapping[str, Any]) -> bool:
        return True

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> Any:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Helpers shared by subclasses
    # ------------------------------------------------------------------

    @staticmethod
    def params(config: Mapping[str, Any]) -> dict[str, Any]:
        """Return step parameters: inline fields overlaid by the ``with`` block."""
        inline = {k: v for k, v in config.items() if k not in ("type", "id", "with")}
        block = config.get("with")
        if isinstance(block, Mapping):
            inline.update(block)
        return inline

    def require(self, params: Mapping[str, Any], *names: str) -> None:
        """Raise StepConfigError naming the first missing parameter."""
        for name in names:
            value = params.get(name)
            if value is None or value == "" or value == [] or value == {}:
                raise StepConfigError(f"{self.type_name} step requires '{name}'")


def render_step_config(
    engine: TemplateEngine,
    config: Mapping[str, Any],
    context: Mapping[str, Any],
    deferred_fields: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Render every string leaf of a step declaration.

    Paths listed in ``deferred_fields`` (dotted, e.g. ``with.template``) and
    the ``type`` key are copied unrendered.

    Examples:
        >>> from fragments.dsl.template import TemplateEngine
        >>> render_step_config(
        ...     TemplateEngine(),
        ...     {"type": "list.map", "with": {"input": "{{ ctx.items }}", "template": "{{ item }}"}},
        ...     {"ctx": {"items": [1, 2]}},
        ...     ("with.template",),
        ... )
        {'type': 'list.map', 'with': {'input': [1, 2], 'template': '{{ item }}'}}
    """
    deferred = {tuple(path.split(".")) for path in deferred_fields}
    deferred.add(("type",))

    def walk(value: Any, path: tuple[str, ...]) -> Any:
        if path in deferred:
            return value
        if isinstance(value, Mapping):
            return {key: walk(item, (*path, str(key))) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [walk(item, path) for item in value]
        if isinstance(value, str):
            return engine.render_value(value, context)
        return value

    return walk(config, ())


__all__ = [
    "AbstractStep",
    "Step",
    "render_step_config",
]
