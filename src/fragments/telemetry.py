"""Step and command telemetry.

Telemetry is a log-based side channel: it never influences control flow,
and disabling it only silences the records.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

#: Default duration thresholds (milliseconds).
DEFAULT_THRESHOLDS: dict[str, float] = {
    "fast": 50,
    "normal": 200,
    "slow": 1000,
    "very_slow": 3000,
}


class CommandTelemetry:
    """Record step, condition and command timings.

    Args:
        enabled: Emit records when True.
        thresholds: ``fast``/``normal``/``slow``/``very_slow`` limits in ms.

    Examples:
        >>> telemetry = CommandTelemetry()
        >>> telemetry.classify(120)
        'normal'
        >>> telemetry.classify(5000)
        'very_slow'
    """

    def __init__(self, enabled: bool = True, thresholds: Mapping[str, float] | None = None) -> None:
        self.enabled = enabled
        self.thresholds = {**DEFAULT_THRESHOLDS, **(thresholds or {})}
        self.records: list[dict[str, Any]] = []
        self.keep_records = False

    def classify(self, duration_ms: float) -> str:
        """Return the performance bucket for a duration."""
        if duration_ms <= self.thresholds["fast"]:
            return "fast"
        if duration_ms <= self.thresholds["normal"]:
            return "normal"
        if duration_ms <= self.thresholds["slow"]:
            return "slow"
        return "very_slow"

    def _emit(self, event: str, **fields: Any) -> None:
        if not self.enabled:
            return
        record = {"event": event, **fields}
        if self.keep_records:
            self.records.append(record)
        logger.debug("telemetry %s %s", event, fields)

    def step_started(self, step_id: str, step_type: str) -> None:
        self._emit("step_started", step_id=step_id, step_type=step_type)

    def step_completed(
        self,
        step_id: str,
        step_type: str,
        *,
        success: bool,
        duration_ms: float,
        error: str | None = None,
    ) -> None:
        bucket = self.classify(duration_ms)
        self._emit(
            "step_completed",
            step_id=step_id,
            step_type=step_type,
            success=success,
            duration_ms=round(duration_ms, 2),
            performance=bucket,
            error=error,
        )
        if self.enabled and bucket == "very_slow":
            logger.warning("Step '%s' (%s) took %.0fms", step_id, step_type, duration_ms)

    def condition_evaluated(self, condition: str, *, result: bool, branch: str, duration_ms: float) -> None:
        self._emit(
            "condition_evaluated",
            condition=condition,
            result=result,
            branch=branch,
            duration_ms=round(duration_ms, 2),
        )

    def command_completed(self, slug: str | None, *, success: bool, performance: Mapping[str, float]) -> None:
        self._emit("command_completed", command=slug, success=success, **performance)


__all__ = [
    "DEFAULT_THRESHOLDS",
    "CommandTelemetry",
]
