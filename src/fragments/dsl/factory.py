"""Step registry and the shared services injected into steps.

The factory is the single extension point for step types: plugins call
:meth:`StepFactory.register` with a class whose constructor accepts a
:class:`StepServices`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from box import Box

from fragments.ai.provider import AIProvider, HttpAIProvider
from fragments.cache.strategies import CacheStrategy, TTLCacheStrategy
from fragments.dsl.base import AbstractStep
from fragments.dsl.exceptions import StepConfigError, UnknownStepTypeError
from fragments.dsl.steps import BUILTIN_STEPS
from fragments.dsl.template import TemplateEngine, lookup_path
from fragments.dsl.validators import validate_step_type
from fragments.events import EventBus
from fragments.jobs import InMemoryJobQueue, JobQueue, JobRegistry
from fragments.parsing.todo import TodoTextParser
from fragments.store.base import InvocationLog, ModelStore
from fragments.store.sql import SqlInvocationLog, SqlModelStore
from fragments.telemetry import CommandTelemetry
from fragments.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

StepConstructor = Callable[["StepServices"], AbstractStep]


@dataclass
class StepServices:
    """Collaborators shared by every step built by one factory.

    Attributes:
        template: Template engine for ``{{ }}`` rendering and conditions.
        store: Model store for CRUD steps.
        invocation_log: Audit sink for ``tool.call``.
        ai_provider: Text generation backend for ``ai.generate``.
        tools: Tool registry and allow-list.
        cache: Response cache for ``ai.generate``.
        events: Event bus for tool and notification events.
        telemetry: Step and condition telemetry.
        job_queue: Destination of ``job.dispatch``.
        jobs: Logical job name registry.
        todo_parser: Parser for ``text.parse``.
        settings: Loaded configuration.
        factory: Owning factory, set by :class:`StepFactory`.
    """

    template: TemplateEngine = field(default_factory=TemplateEngine)
    store: ModelStore | None = None
    invocation_log: InvocationLog | None = None
    ai_provider: AIProvider | None = None
    tools: ToolRegistry = field(default_factory=ToolRegistry)
    cache: CacheStrategy = field(default_factory=lambda: TTLCacheStrategy(ttl=3600))
    events: EventBus = field(default_factory=EventBus)
    telemetry: CommandTelemetry = field(default_factory=lambda: CommandTelemetry(enabled=False))
    job_queue: JobQueue = field(default_factory=InMemoryJobQueue)
    jobs: JobRegistry = field(default_factory=JobRegistry)
    todo_parser: TodoTextParser = field(default_factory=TodoTextParser)
    settings: Mapping[str, Any] = field(default_factory=Box)
    factory: StepFactory | None = None

    def setting(self, path: str, default: Any = None) -> Any:
        """Read a dotted configuration value.

        Examples:
            >>> StepServices(settings={"ai": {"enabled": False}}).setting("ai.enabled", True)
            False
        """
        value = lookup_path(self.settings, path)
        return default if value is None else value

    def require_store(self, step_type: str) -> ModelStore:
        """Return the model store or fail before any side effect."""
        if self.store is None:
            raise StepConfigError(f"{step_type} step requires a configured model store")
        return self.store

    def require_factory(self, step_type: str) -> StepFactory:
        if self.factory is None:
            raise StepConfigError(f"{step_type} step requires a step factory")
        return self.factory

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> StepServices:
        """Build services from the ``fragments.conf.yml`` sections.

        Args:
            config: Configuration mapping; defaults to :func:`fragments.config.get_config`.
        """
        if config is None:
            from fragments.config import get_config  # pylint: disable=import-outside-toplevel

            config = get_config()
        settings = Box(config)

        store = None
        invocation_log = None
        store_url = lookup_path(settings, "store.url")
        if store_url:
            store = SqlModelStore.from_url(str(store_url), create_tables=True)
            invocation_log = SqlInvocationLog(store.engine)

        ai_provider = None
        if lookup_path(settings, "ai.enabled"):
            ai_provider = HttpAIProvider(
                str(lookup_path(settings, "ai.base_url") or ""),
                str(lookup_path(settings, "ai.api_key") or ""),
                str(lookup_path(settings, "ai.model") or "gpt-4o-mini"),
            )

        return cls(
            store=store,
            invocation_log=invocation_log,
            ai_provider=ai_provider,
            tools=ToolRegistry(allowed=lookup_path(settings, "tools.allowed") or ()),
            cache=TTLCacheStrategy(ttl=float(lookup_path(settings, "ai.cache_ttl") or 3600)),
            telemetry=CommandTelemetry(
                enabled=bool(lookup_path(settings, "telemetry.enabled")),
                thresholds=lookup_path(settings, "telemetry.thresholds") or None,
            ),
            jobs=JobRegistry(lookup_path(settings, "jobs.map") or {}),
            settings=settings,
        )


class StepFactory:
    """Map step type strings to step instances.

    Args:
        services: Shared collaborators; a default set is created when omitted.
        register_builtins: Register the built-in step types.

    Examples:
        >>> factory = StepFactory()
        >>> factory.create("condition").get_type()
        'condition'
        >>> "model.query" in factory.get_available_types()
        True
        >>> factory.create("nope")
        Traceback (most recent call last):
            ...
        fragments.dsl.exceptions.UnknownStepTypeError: Unknown step type: nope
    """

    def __init__(self, services: StepServices | None = None, *, register_builtins: bool = True) -> None:
        self.services = services or StepServices()
        self.services.factory = self
        self._registry: dict[str, StepConstructor] = {}
        if register_builtins:
            for step_class in BUILTIN_STEPS:
                self.register(step_class.type_name, step_class)

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> StepFactory:
        """Create a factory whose services are built from configuration."""
        return cls(StepServices.from_config(config))

    def register(self, step_type: str, step_class: StepConstructor) -> None:
        """Register or replace a step type.

        Raises:
            StepConfigError: If the type string is invalid or the class is not callable.
        """
        validate_step_type(step_type)
        if not callable(step_class):
            raise StepConfigError(f"Step class for '{step_type}' must be callable")
        if step_type in self._registry:
            logger.debug("Replacing step type '%s'", step_type)
        self._registry[step_type] = step_class

    def unregister(self, step_type: str) -> None:
        self._registry.pop(step_type, None)

    def has(self, step_type: str) -> bool:
        return step_type in self._registry

    def create(self, step_type: str) -> AbstractStep:
        """Instantiate the step registered for ``step_type``.

        Raises:
            UnknownStepTypeError: If nothing is registered for the type.
            StepConfigError: If the registered class does not satisfy the step protocol.
        """
        constructor = self._registry.get(step_type)
        if constructor is None:
            raise UnknownStepTypeError(step_type)
        step = constructor(self.services)
        if not isinstance(step, AbstractStep):
            raise StepConfigError(f"Registered class for '{step_type}' does not implement the step protocol")
        return step

    def get_available_types(self) -> list[str]:
        return sorted(self._registry)


__all__ = [
    "StepFactory",
    "StepServices",
]
