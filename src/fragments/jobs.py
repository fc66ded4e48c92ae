"""Background job dispatch.

Logical job names map to ``module.path:ClassName`` import targets. The
``job.dispatch`` step instantiates the class with its resolved parameters
and pushes the instance to a :class:`JobQueue`.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from fragments.dsl.exceptions import StepConfigError
from fragments.dsl.validators import validate_import_target

logger = logging.getLogger(__name__)


@runtime_checkable
class JobQueue(Protocol):
    """Destination for dispatched jobs."""

    def push(self, job: Any, *, queue: str, delay_seconds: int = 0) -> None:
        """Enqueue ``job`` on ``queue``, runnable after ``delay_seconds``."""
        ...


@dataclass(frozen=True, slots=True)
class QueuedJob:
    """A job held by :class:`InMemoryJobQueue`."""

    job: Any
    queue: str
    delay_seconds: int


class InMemoryJobQueue:
    """Queue that keeps jobs in a list, for development and tests.

    Examples:
        >>> queue = InMemoryJobQueue()
        >>> queue.push("work", queue="default")
        >>> len(queue)
        1
    """

    def __init__(self) -> None:
        self.jobs: list[QueuedJob] = []

    def push(self, job: Any, *, queue: str, delay_seconds: int = 0) -> None:
        self.jobs.append(QueuedJob(job=job, queue=queue, delay_seconds=delay_seconds))
        logger.info("Queued %s on '%s' (delay=%ds)", type(job).__name__, queue, delay_seconds)

    def __len__(self) -> int:
        return len(self.jobs)


class JobRegistry:
    """Map logical job names to job classes.

    Args:
        targets: ``{name: "module.path:ClassName"}``.

    Examples:
        >>> registry = JobRegistry({"counter": "collections:Counter"})
        >>> registry.resolve("counter").__name__
        'Counter'
    """

    def __init__(self, targets: Mapping[str, str] | None = None) -> None:
        self._targets: dict[str, str] = {}
        self._classes: dict[str, type] = {}
        for name, target in (targets or {}).items():
            self.register(name, target)

    def register(self, name: str, target: str | type) -> None:
        """Register a class directly or by import target."""
        if isinstance(target, type):
            self._classes[name] = target
            self._targets[name] = f"{target.__module__}:{target.__qualname__}"
        else:
            self._targets[name] = validate_import_target(target)
            self._classes.pop(name, None)

    def names(self) -> list[str]:
        return sorted(self._targets)

    def resolve(self, name: str) -> type:
        """Return the job class for ``name``.

        Raises:
            StepConfigError: If the name is unknown or the target cannot be imported.
        """
        if name in self._classes:
            return self._classes[name]
        target = self._targets.get(name)
        if target is None:
            available = ", ".join(self.names()) or "(none)"
            raise StepConfigError(f"Unknown job: {name!r}. Available: {available}")
        module_path, _, class_name = target.partition(":")
        try:
            job_class = getattr(importlib.import_module(module_path), class_name)
        except (ImportError, AttributeError) as exc:
            raise StepConfigError(f"Cannot import job '{name}' from {target!r}") from exc
        self._classes[name] = job_class
        return job_class


__all__ = [
    "InMemoryJobQueue",
    "JobQueue",
    "JobRegistry",
    "QueuedJob",
]
