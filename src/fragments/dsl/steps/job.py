"""``job.dispatch`` step: queue a background job by logical name."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from fragments.dsl.base import Step
from fragments.dsl.exceptions import StepConfigError
from fragments.dsl.template import lookup_path
from fragments.utils import is_numeric

logger = logging.getLogger(__name__)

#: Delay unit -> seconds.
DELAY_UNITS: dict[str, int] = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 604800,
}

_DELAY_PATTERN = re.compile(r"^(\d+)\s*(second|minute|hour|day|week)s?$", re.IGNORECASE)
_STEP_REFERENCE = re.compile(r"^steps\.[A-Za-z0-9_-]+\.output(\.[A-Za-z0-9_.-]+)?$")


def parse_delay(delay: Any) -> int:
    """Convert a delay to seconds.

    Accepts a number of seconds or a ``"<n> <unit>"`` string.

    Raises:
        StepConfigError: If the delay is negative or cannot be parsed.

    Examples:
        >>> parse_delay(30), parse_delay("5 minutes"), parse_delay("1 day")
        (30, 300, 86400)
        >>> parse_delay(None)
        0
    """
    if delay is None or delay == "":
        return 0
    if is_numeric(delay):
        seconds = int(float(delay))
    else:
        match = _DELAY_PATTERN.match(str(delay).strip())
        if not match:
            raise StepConfigError(f"Invalid delay: {delay!r}. Use seconds or '<n> <unit>'")
        seconds = int(match.group(1)) * DELAY_UNITS[match.group(2).lower()]
    if seconds < 0:
        raise StepConfigError(f"Delay cannot be negative: {delay!r}")
    return seconds


def resolve_references(value: Any, context: Mapping[str, Any]) -> Any:
    """Replace ``steps.<id>.output[.<key>]`` strings with the referenced values.

    Examples:
        >>> context = {"steps": {"make": {"output": {"id": 12}}}}
        >>> resolve_references({"fragment_id": "steps.make.output.id", "mode": "fast"}, context)
        {'fragment_id': 12, 'mode': 'fast'}
    """
    if isinstance(value, str) and _STEP_REFERENCE.match(value.strip()):
        return lookup_path(context, value.strip())
    if isinstance(value, Mapping):
        return {key: resolve_references(item, context) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_references(item, context) for item in value]
    return value


class JobDispatchStep(Step):
    """Instantiate the job registered as ``with.job`` and push it to the queue.

    A mapping of ``parameters`` is passed as keyword arguments, a list as
    positional arguments.
    """

    type_name = "job.dispatch"

    def validate(self, config: Mapping[str, Any]) -> bool:
        return bool(self.params(config).get("job"))

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        name = params.get("job")
        if not name:
            raise StepConfigError("job.dispatch step requires 'job'")
        job_class = self.services.jobs.resolve(str(name))
        parameters = resolve_references(params.get("parameters") or {}, context)
        if not isinstance(parameters, (Mapping, list)):
            raise StepConfigError("job.dispatch 'parameters' must be a mapping or a list")
        delay = parse_delay(params.get("delay"))
        queue = str(params.get("queue") or self.services.setting("jobs.default_queue", "default"))
        class_path = f"{job_class.__module__}.{job_class.__qualname__}"

        if dry_run:
            logger.info("[DRY RUN] job.dispatch %s on '%s'", name, queue)
            return {
                "dry_run": True,
                "would_dispatch": name,
                "job_class": class_path,
                "queue": queue,
                "delay_seconds": delay,
                "parameters": parameters,
            }

        if isinstance(parameters, Mapping):
            job = job_class(**parameters)
        else:
            job = job_class(*parameters)
        self.services.job_queue.push(job, queue=queue, delay_seconds=delay)
        logger.info("Dispatched job '%s' (%s) on '%s'", name, class_path, queue)
        return {
            "dispatched": True,
            "job": name,
            "job_class": class_path,
            "queue": queue,
            "delay_seconds": delay,
            "parameters": parameters,
        }


__all__ = [
    "DELAY_UNITS",
    "JobDispatchStep",
    "parse_delay",
    "resolve_references",
]
