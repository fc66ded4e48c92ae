"""``transform`` step: render a template against the current context."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from fragments.dsl.base import Step
from fragments.dsl.exceptions import OutputShapeError, StepConfigError
from fragments.utils import truncate

logger = logging.getLogger(__name__)


class TransformStep(Step):
    """Render ``template`` and return the text, or parsed JSON with ``expect: json``.

    Examples:
        >>> from fragments.dsl.factory import StepFactory
        >>> step = StepFactory().create("transform")
        >>> step.execute({"template": "Hi {{ ctx.name }}"}, {"ctx": {"name": "Ada"}})
        'Hi Ada'
    """

    type_name = "transform"
    deferred_fields = ("template", "with.template")

    def validate(self, config: Mapping[str, Any]) -> bool:
        return "template" in self.params(config)

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> Any:
        params = self.params(config)
        template = params.get("template")
        if template is None:
            raise StepConfigError("transform step requires 'template'")
        expect = str(params.get("expect", "text")).lower()

        rendered = self.services.template.render(template, context)
        if dry_run:
            logger.info("[DRY RUN] transform rendered %d chars", len(rendered))
            return {"dry_run": True, "rendered": rendered, "expect": expect}
        if expect != "json":
            return rendered
        try:
            return json.loads(rendered)
        except ValueError as exc:
            raise OutputShapeError(
                self.type_name, f"rendered template is not valid JSON: {truncate(rendered, 200)}"
            ) from exc


__all__ = [
    "TransformStep",
]
