"""``data.transform`` step: apply per-field conversion rules to a record."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from fragments.dsl.exceptions import DslError, StepConfigError, StepValidationError
from fragments.dsl.steps.utility import UtilityStep, elapsed_ms, is_empty
from fragments.dsl.template import stringify
from fragments.utils import is_numeric, parse_datetime, slugify, to_number

logger = logging.getLogger(__name__)

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_INTEGER = re.compile(r"^[+-]?\d+$")
_CALCULATION = re.compile(r"^\s*([+\-*/])\s*(.+)$")

#: Strings read as false by the boolean conversion.
FALSY_STRINGS = frozenset({"", "0", "false", "no", "off", "null"})


# ============================================================================
# Type conversions
# ============================================================================


def _to_string(value: Any, fmt: str | None) -> str:
    if fmt and isinstance(value, datetime):
        return value.strftime(fmt)
    if fmt and is_numeric(value):
        return fmt % to_number(value)
    return stringify(value)


def _to_integer(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        clean = value.strip().lower()
        if clean in ("true", "yes"):
            return 1
        if clean in ("false", "no"):
            return 0
    return int(to_number(value))


def _to_float(value: Any) -> float:
    return float(to_number(value))


def _to_boolean(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in FALSY_STRINGS
    return bool(value)


def _to_array(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            decoded = None
        if decoded is not None:
            return decoded if isinstance(decoded, list) else [decoded]
        if "," in value:
            return [part.strip() for part in value.split(",")]
    return [value]


def _to_object(value: Any) -> dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            decoded = None
        if isinstance(decoded, dict):
            return decoded
    return {"value": value}


def _to_datetime(value: Any, fmt: str | None = None) -> datetime:
    if fmt and isinstance(value, str):
        parsed = datetime.strptime(value, fmt)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return parse_datetime(value)


_CONVERSIONS = {
    "integer": lambda value, fmt: _to_integer(value),
    "int": lambda value, fmt: _to_integer(value),
    "float": lambda value, fmt: _to_float(value),
    "double": lambda value, fmt: _to_float(value),
    "boolean": lambda value, fmt: _to_boolean(value),
    "bool": lambda value, fmt: _to_boolean(value),
    "array": lambda value, fmt: _to_array(value),
    "object": lambda value, fmt: _to_object(value),
    "date": lambda value, fmt: _to_datetime(value, fmt).isoformat(),
    "timestamp": lambda value, fmt: int(_to_datetime(value, fmt).timestamp()),
    "json": lambda value, fmt: json.dumps(value, ensure_ascii=False, default=str),
    "string": _to_string,
}


def convert_type(value: Any, target: str, fmt: str | None = None) -> Any:
    """Convert ``value`` to ``target``; on failure return it unchanged.

    Examples:
        >>> convert_type("true", "integer"), convert_type("off", "boolean")
        (1, False)
        >>> convert_type("a, b", "array")
        ['a', 'b']
        >>> convert_type("abc", "float")
        'abc'
    """
    conversion = _CONVERSIONS.get(target)
    if conversion is None:
        return value
    try:
        return conversion(value, fmt)
    except (ValueError, TypeError, OverflowError) as exc:
        logger.debug("Conversion of %r to %s failed: %s", value, target, exc)
        return value


# ============================================================================
# Named transformations
# ============================================================================


def _split(value: Any, rule: Mapping[str, Any]) -> list[str]:
    delimiter = str(rule.get("delimiter", ","))
    limit = rule.get("limit")
    if limit:
        return stringify(value).split(delimiter, int(limit) - 1)
    return stringify(value).split(delimiter)


def _join(value: Any, rule: Mapping[str, Any]) -> str:
    if not isinstance(value, (list, tuple)):
        return stringify(value)
    return str(rule.get("delimiter", ",")).join(stringify(item) for item in value)


def _extract(value: Any, rule: Mapping[str, Any]) -> Any:
    pattern = rule.get("pattern")
    key = rule.get("key")
    if pattern and isinstance(value, str):
        match = re.search(str(pattern), value)
        if match:
            return match.group(1) if match.groups() else match.group(0)
    if key and isinstance(value, Mapping):
        return value.get(key)
    return value


def _calculate(value: Any, rule: Mapping[str, Any]) -> Any:
    expression = rule.get("expression")
    if not expression or not is_numeric(value):
        return value
    match = _CALCULATION.match(str(expression))
    if not match or not is_numeric(match.group(2)):
        return value
    number = float(to_number(value))
    operand = float(to_number(match.group(2)))
    op = match.group(1)
    if op == "+":
        return number + operand
    if op == "-":
        return number - operand
    if op == "*":
        return number * operand
    return number / operand if operand != 0 else number


def _format_date(value: Any, rule: Mapping[str, Any]) -> str:
    fmt = str(rule.get("format") or "%Y-%m-%d %H:%M:%S")
    return _to_datetime(value, rule.get("input_format")).strftime(fmt)


def _normalize_url(value: Any) -> str:
    url = stringify(value).strip()
    return url if url.startswith(("http://", "https://")) else f"https://{url}"


_NORMALIZERS = {
    "phone": lambda value: re.sub(r"[^0-9]", "", stringify(value)),
    "email": lambda value: stringify(value).strip().lower(),
    "url": _normalize_url,
    "slug": lambda value: slugify(stringify(value)),
}


def _normalize(value: Any, rule: Mapping[str, Any]) -> Any:
    normalizer = _NORMALIZERS.get(str(rule.get("type", "string")))
    return normalizer(value) if normalizer else value


def _is_url(value: Any) -> bool:
    parsed = urlparse(stringify(value))
    return bool(parsed.scheme and parsed.netloc)


_VALIDATORS = {
    "required": lambda value: not is_empty(value),
    "email": lambda value: isinstance(value, str) and bool(_EMAIL.match(value)),
    "url": _is_url,
    "numeric": is_numeric,
    "integer": lambda value: (isinstance(value, int) and not isinstance(value, bool))
    or (isinstance(value, str) and bool(_INTEGER.match(value.strip()))),
    "boolean": lambda value: isinstance(value, bool) or stringify(value).lower() in ("true", "false", "1", "0"),
}


# ============================================================================
# Step
# ============================================================================


class DataTransformStep(UtilityStep):
    """Apply ``with.rules`` to the fields of ``with.input``.

    Each rule names a ``field`` and one of: ``map`` (lookup table),
    ``from``/``to`` (type conversion, optional ``format``) or ``transform``
    (split, join, extract, calculate, format_date, normalize, validate).
    ``default`` fills a missing field.

    Examples:
        >>> from fragments.dsl.factory import StepFactory
        >>> step = StepFactory().create("data.transform")
        >>> rules = [{"field": "age", "from": "string", "to": "integer"}]
        >>> step.execute({"with": {"input": {"age": "true"}, "rules": rules}}, {})["output"]
        {'age': 1}
    """

    type_name = "data.transform"

    def validate(self, config: Mapping[str, Any]) -> bool:
        params = self.params(config)
        rules = params.get("rules")
        return "input" in params and isinstance(rules, (list, tuple)) and len(rules) > 0

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.validate_config(config)
        source = params.get("input", {})
        rules = params.get("rules") or []
        if not rules:
            raise StepConfigError("data.transform step requires 'rules'")
        if not isinstance(rules, (list, tuple)) or not all(isinstance(rule, Mapping) for rule in rules):
            raise StepConfigError("data.transform 'rules' must be a list of mappings")

        if dry_run:
            logger.info("[DRY RUN] data.transform with %d rule(s)", len(rules))
            return {
                "dry_run": True,
                "input_type": type(source).__name__,
                "rules_count": len(rules),
                "rules": [
                    {"field": rule.get("field", "unknown"), "transform": rule.get("transform") or rule.get("to") or "unknown"}
                    for rule in rules
                ],
                "would_transform": True,
            }

        started = time.perf_counter()
        try:
            data = self.resolve_input(source, context)
            for rule in rules:
                data = self.apply_rule(data, rule)
            return {
                "success": True,
                "output": data,
                "rules_applied": len(rules),
                "processing_time_ms": elapsed_ms(started),
            }
        except (DslError, ValueError, TypeError) as exc:
            logger.warning("data.transform failed: %s", exc)
            return {
                "success": False,
                "error": str(exc),
                "processing_time_ms": elapsed_ms(started),
                "fallback": source,
            }

    def resolve_input(self, source: Any, context: Mapping[str, Any]) -> Any:
        if isinstance(source, str):
            rendered = self.services.template.render_value(source, context)
            if isinstance(rendered, str) and rendered.strip().startswith(("{", "[")):
                try:
                    return json.loads(rendered)
                except ValueError:
                    return rendered
            return rendered
        return self.render_templates(source, context)

    def apply_rule(self, data: Any, rule: Mapping[str, Any]) -> Any:
        """Apply one rule; non-mapping data passes through."""
        field = rule.get("field")
        if field is None:
            raise StepConfigError("Transformation rule must specify 'field'")
        if not isinstance(data, Mapping):
            return data
        updated = dict(data)
        if updated.get(field) is not None:
            updated[field] = self.transform_value(str(field), updated[field], rule)
        elif rule.get("default") is not None:
            updated[field] = rule["default"]
        return updated

    def transform_value(self, field: str, value: Any, rule: Mapping[str, Any]) -> Any:
        lookup = rule.get("map")
        if isinstance(lookup, Mapping):
            if isinstance(value, (str, int, float, bool)):
                return lookup.get(value, lookup.get(stringify(value), value))
            return value
        if rule.get("from") is not None and rule.get("to") is not None:
            return convert_type(value, str(rule["to"]), rule.get("format"))
        transform = rule.get("transform")
        if transform is None:
            return value
        if transform == "validate":
            failed = [name for name in rule.get("rules") or [] if not _VALIDATORS.get(name, lambda v: True)(value)]
            if failed:
                raise StepValidationError(self.type_name, [f"{field} failed rule '{name}'" for name in failed])
            return value
        handler = _NAMED_TRANSFORMS.get(str(transform))
        return handler(value, rule) if handler else value


_NAMED_TRANSFORMS = {
    "split": _split,
    "join": _join,
    "extract": _extract,
    "calculate": _calculate,
    "format_date": _format_date,
    "normalize": _normalize,
}


__all__ = [
    "FALSY_STRINGS",
    "DataTransformStep",
    "convert_type",
]
