"""``context.merge`` step: deep-merge several sources into one mapping."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from typing import Any

from fragments.dsl.exceptions import StepConfigError
from fragments.dsl.steps.utility import MERGE_STRATEGIES, UtilityStep, deep_merge, elapsed_ms

logger = logging.getLogger(__name__)


class ContextMergeStep(UtilityStep):
    """Merge ``with.sources`` left to right using ``with.strategy``.

    A source that resolves to a non-mapping value is stored under ``value``.

    Examples:
        >>> from fragments.dsl.factory import StepFactory
        >>> step = StepFactory().create("context.merge")
        >>> step.execute({"with": {"sources": [{"a": 1, "b": 1}, {"b": 2}]}}, {})["output"]
        {'a': 1, 'b': 2}
    """

    type_name = "context.merge"

    def validate(self, config: Mapping[str, Any]) -> bool:
        params = self.params(config)
        sources = params.get("sources")
        if not isinstance(sources, (list, tuple)) or not sources:
            return False
        return params.get("strategy", "right_wins") in MERGE_STRATEGIES

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.validate_config(config)
        sources = params.get("sources") or []
        strategy = str(params.get("strategy") or "right_wins")
        output_key = str(params.get("output") or "merged_data")
        if not sources or not isinstance(sources, (list, tuple)):
            raise StepConfigError("context.merge step requires a 'sources' list")
        if strategy not in MERGE_STRATEGIES:
            raise StepConfigError(f"Unknown merge strategy: {strategy!r}. Available: {', '.join(MERGE_STRATEGIES)}")

        if dry_run:
            logger.info("[DRY RUN] context.merge of %d source(s) (%s)", len(sources), strategy)
            return {
                "dry_run": True,
                "sources_count": len(sources),
                "strategy": strategy,
                "output_key": output_key,
                "would_merge": True,
            }

        started = time.perf_counter()
        try:
            merged: dict[str, Any] = {}
            for source in sources:
                data = self.resolve_source(source, context)
                if data is None:
                    continue
                if isinstance(data, Mapping):
                    merged = deep_merge(merged, data, strategy)
                else:
                    merged["value"] = data
            return {
                "success": True,
                "output": merged,
                "output_key": output_key,
                "sources_processed": len(sources),
                "strategy_used": strategy,
                "processing_time_ms": elapsed_ms(started),
            }
        except (StepConfigError, ValueError, TypeError) as exc:
            logger.warning("context.merge failed: %s", exc)
            return {
                "success": False,
                "error": str(exc),
                "sources_processed": 0,
                "processing_time_ms": elapsed_ms(started),
                "fallback": {},
            }

    def resolve_source(self, source: Any, context: Mapping[str, Any]) -> Any:
        if isinstance(source, str):
            rendered = self.services.template.render_value(source, context)
            if isinstance(rendered, str) and rendered.strip().startswith("{"):
                try:
                    return json.loads(rendered)
                except ValueError:
                    return rendered
            return rendered
        return self.render_templates(source, context)


__all__ = [
    "ContextMergeStep",
]
