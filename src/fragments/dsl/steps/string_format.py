"""``string.format`` step: fill a text template from a data block and the context."""

from __future__ import annotations

import base64
import hashlib
import html
import json
import logging
import re
import textwrap
import time
from collections.abc import Mapping
from typing import Any, ClassVar
from urllib.parse import quote_plus

from fragments.dsl.context import as_execution_context
from fragments.dsl.exceptions import StepConfigError
from fragments.dsl.steps.utility import (
    BASE_COMPLEX_TRANSFORMS,
    BASE_SIMPLE_TRANSFORMS,
    ComplexTransform,
    SimpleTransform,
    UtilityStep,
    elapsed_ms,
)
from fragments.dsl.template import stringify
from fragments.utils import is_numeric, strip_tags

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(.+?)\s*\}\}", re.DOTALL)
_ROOT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*")


# ============================================================================
# String transforms
# ============================================================================


def _pad(params: Any) -> tuple[int, str]:
    if isinstance(params, Mapping):
        return int(params.get("length", 10)), str(params.get("char", " ")) or " "
    return (int(params) if is_numeric(params) else 10), " "


def _pad_left(value: str, params: Any) -> str:
    length, char = _pad(params)
    missing = length - len(value)
    return value if missing <= 0 else (char * missing)[:missing] + value


def _pad_right(value: str, params: Any) -> str:
    length, char = _pad(params)
    missing = length - len(value)
    return value if missing <= 0 else value + (char * missing)[:missing]


def _wrap(value: str, params: Any) -> str:
    if isinstance(params, str):
        return f"{params}{value}{params}"
    if isinstance(params, Mapping):
        return f"{params.get('prefix', '')}{value}{params.get('suffix', '')}"
    return value


def _word_wrap(value: str, params: Any) -> str:
    if isinstance(params, Mapping):
        width = int(params.get("width", 80))
        separator = str(params.get("break", "\n"))
        cut = bool(params.get("cut", False))
    else:
        width, separator, cut = (int(params) if is_numeric(params) else 80), "\n", False
    lines = textwrap.wrap(value, width=max(1, width), break_long_words=cut, break_on_hyphens=False)
    return separator.join(lines)


def _text(func: Any) -> Any:
    """Coerce the incoming value to text before applying ``func``."""

    def apply(value: Any, *args: Any) -> Any:
        return func(stringify(value), *args)

    return apply


STRING_SIMPLE_TRANSFORMS: dict[str, SimpleTransform] = {
    "reverse": _text(lambda s: s[::-1]),
    "strip_tags": _text(strip_tags),
    "escape_html": _text(lambda s: html.escape(s, quote=True)),
    "url_encode": _text(quote_plus),
    "base64_encode": _text(lambda s: base64.b64encode(s.encode("utf-8")).decode("ascii")),
    "md5": _text(lambda s: hashlib.md5(s.encode("utf-8")).hexdigest()),  # noqa: S324
    "length": _text(len),
}

STRING_COMPLEX_TRANSFORMS: dict[str, ComplexTransform] = {
    "pad_left": _text(_pad_left),
    "pad_right": _text(_pad_right),
    "wrap": _text(_wrap),
    "prefix": _text(lambda s, p: f"{p if isinstance(p, str) else ''}{s}"),
    "suffix": _text(lambda s, p: f"{s}{p if isinstance(p, str) else ''}"),
    "repeat": _text(lambda s, p: s * max(0, int(p) if is_numeric(p) else 1)),
    "word_wrap": _text(_word_wrap),
}


# ============================================================================
# Step
# ============================================================================


class StringFormatStep(UtilityStep):
    """Format ``with.template`` using ``with.data`` and the execution context.

    Placeholders are resolved against ``data`` first, then against the
    context. A placeholder whose root name is found in neither is left in
    the output unchanged.

    Examples:
        >>> from fragments.dsl.factory import StepFactory
        >>> step = StepFactory().create("string.format")
        >>> result = step.execute(
        ...     {"with": {"template": "{{ name }} / {{ missing }}", "data": {"name": "ada"}, "transforms": ["uppercase"]}},
        ...     {},
        ... )
        >>> result["output"]
        'ADA / {{ MISSING }}'
    """

    type_name = "string.format"
    deferred_fields = ("with.template", "template")
    simple_transforms: ClassVar = (STRING_SIMPLE_TRANSFORMS, BASE_SIMPLE_TRANSFORMS)
    complex_transforms: ClassVar = (STRING_COMPLEX_TRANSFORMS, BASE_COMPLEX_TRANSFORMS)

    def validate(self, config: Mapping[str, Any]) -> bool:
        template = self.params(config).get("template")
        return isinstance(template, str) and template != ""

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.validate_config(config)
        template = params.get("template")
        if not isinstance(template, str) or not template:
            raise StepConfigError("string.format step requires 'template'")
        data = params.get("data") or {}
        transforms = params.get("transforms") or []

        if dry_run:
            logger.info("[DRY RUN] string.format %r", template)
            return {
                "dry_run": True,
                "template": template,
                "data_keys": list(data) if isinstance(data, Mapping) else "dynamic",
                "transforms_count": len(transforms) if isinstance(transforms, (list, tuple)) else 1,
                "would_format": True,
            }

        started = time.perf_counter()
        try:
            resolved = self.resolve_data(data, context)
            formatted: Any = self.format(template, resolved, context)
            if transforms:
                formatted = self.apply_transforms(formatted, transforms)
            return {
                "success": True,
                "output": formatted,
                "template_used": template,
                "data_processed": resolved,
                "transforms_applied": len(transforms) if isinstance(transforms, (list, tuple)) else 1,
                "processing_time_ms": elapsed_ms(started),
            }
        except (StepConfigError, ValueError, TypeError) as exc:
            logger.warning("string.format failed: %s", exc)
            return {
                "success": False,
                "error": str(exc),
                "processing_time_ms": elapsed_ms(started),
                "fallback": template,
            }

    def resolve_data(self, data: Any, context: Mapping[str, Any]) -> dict[str, Any]:
        """Normalize ``with.data`` to a mapping."""
        if isinstance(data, str):
            rendered = self.services.template.render_value(data, context)
            if isinstance(rendered, str) and rendered.strip().startswith("{"):
                try:
                    rendered = json.loads(rendered)
                except ValueError:
                    return {"value": rendered}
            return dict(rendered) if isinstance(rendered, Mapping) else {"value": rendered}
        if isinstance(data, Mapping):
            return dict(self.render_templates(data, context))
        return {"value": data}

    def format(self, template: str, data: Mapping[str, Any], context: Mapping[str, Any]) -> str:
        """Substitute every resolvable placeholder of ``template``."""
        engine = self.services.template
        scope = as_execution_context(context).with_locals(**{str(k): v for k, v in data.items()})

        def substitute(match: re.Match[str]) -> str:
            expression = match.group(1)
            root = _ROOT.match(expression)
            if root is None or root.group(0) not in scope:
                return match.group(0)
            return stringify(engine.evaluate(expression, scope))

        return _PLACEHOLDER.sub(substitute, template)


__all__ = [
    "STRING_COMPLEX_TRANSFORMS",
    "STRING_SIMPLE_TRANSFORMS",
    "StringFormatStep",
]
