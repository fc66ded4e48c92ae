"""``list.map`` step: filter, reshape and transform the items of a list."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from fragments.dsl.context import as_execution_context
from fragments.dsl.exceptions import StepConfigError
from fragments.dsl.steps.utility import (
    BASE_COMPLEX_TRANSFORMS,
    BASE_SIMPLE_TRANSFORMS,
    ComplexTransform,
    SimpleTransform,
    UtilityStep,
    elapsed_ms,
    is_empty,
)
from fragments.dsl.template import compare_values, stringify
from fragments.utils import is_numeric

logger = logging.getLogger(__name__)


# ============================================================================
# List transforms
# ============================================================================


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, Mapping):
        return list(value.values())
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _flatten(value: Any) -> list[Any]:
    if not isinstance(value, (list, tuple, Mapping)):
        return [value]
    flat: list[Any] = []
    for item in _as_list(value):
        if isinstance(item, (list, tuple, Mapping)):
            flat.extend(_flatten(item))
        else:
            flat.append(item)
    return flat


def _unique(value: Any) -> list[Any]:
    unique: list[Any] = []
    for item in _as_list(value):
        if item not in unique:
            unique.append(item)
    return unique


def _sort_key(item: Any) -> tuple[int, Any]:
    # numbers before strings; mixed lists never raise
    if is_numeric(item) and not isinstance(item, str):
        return (0, item)
    return (1, stringify(item))


def _sort(value: Any) -> list[Any]:
    return sorted(_as_list(value), key=_sort_key)


def _reverse(value: Any) -> list[Any]:
    return list(reversed(_as_list(value)))


def _compact(value: Any) -> list[Any]:
    return [item for item in _as_list(value) if not is_empty(item)]


def _keys(value: Any) -> list[Any]:
    if isinstance(value, Mapping):
        return list(value)
    if isinstance(value, (list, tuple)):
        return list(range(len(value)))
    return []


def _count(value: Any) -> int:
    if isinstance(value, (list, tuple, Mapping, str)):
        return len(value)
    return 1


def _slice(value: Any, params: Any) -> list[Any]:
    items = _as_list(value)
    if isinstance(params, Mapping):
        start = int(params.get("start", 0))
        length = params.get("length")
    else:
        start = int(params) if is_numeric(params) else 0
        length = None
    if length is None:
        return items[start:]
    return items[start : start + int(length)] if int(length) >= 0 else items[start : int(length)]


def _chunk(value: Any, params: Any) -> list[list[Any]]:
    items = _as_list(value)
    size = max(1, int(params)) if is_numeric(params) else 2
    return [items[i : i + size] for i in range(0, len(items), size)]


def _field_name(params: Any) -> str:
    return params if isinstance(params, str) else "id"


def _group_by(value: Any, params: Any) -> dict[Any, list[Any]]:
    field = _field_name(params)
    grouped: dict[Any, list[Any]] = {}
    for item in _as_list(value):
        if isinstance(item, Mapping) and item.get(field) is not None:
            grouped.setdefault(item[field], []).append(item)
    return grouped


def _pluck(value: Any, params: Any) -> list[Any]:
    field = _field_name(params)
    return [item[field] for item in _as_list(value) if isinstance(item, Mapping) and item.get(field) is not None]


_WHERE_TEXT_OPERATORS = {
    "contains": lambda left, right: right in left,
    "starts_with": lambda left, right: left.startswith(right),
    "ends_with": lambda left, right: left.endswith(right),
}


def _matches(item_value: Any, operator: str, expected: Any) -> bool:
    if operator in _WHERE_TEXT_OPERATORS:
        return _WHERE_TEXT_OPERATORS[operator](stringify(item_value), stringify(expected))
    if operator == "in":
        return isinstance(expected, (list, tuple)) and any(compare_values(item_value, "==", e) for e in expected)
    if operator == "=":
        operator = "=="
    if operator in ("==", "!=", ">", "<", ">=", "<="):
        return compare_values(item_value, operator, expected)
    return False


def _where(value: Any, params: Any) -> list[Any]:
    items = _as_list(value)
    if not isinstance(params, Mapping):
        return items
    field = str(params.get("field", "id"))
    operator = str(params.get("operator", "=="))
    expected = params.get("value")
    return [
        item
        for item in items
        if isinstance(item, Mapping) and item.get(field) is not None and _matches(item[field], operator, expected)
    ]


def _sort_by(value: Any, params: Any) -> list[Any]:
    items = _as_list(value)
    if isinstance(params, Mapping):
        field = str(params.get("field", "id"))
        descending = str(params.get("direction", "asc")).lower() == "desc"
    else:
        field = _field_name(params)
        descending = False

    def key(item: Any) -> tuple[int, Any]:
        if not isinstance(item, Mapping) or item.get(field) is None:
            return (2, "")
        return _sort_key(item[field])

    return sorted(items, key=key, reverse=descending)


LIST_SIMPLE_TRANSFORMS: dict[str, SimpleTransform] = {
    "flatten": _flatten,
    "unique": _unique,
    "sort": _sort,
    "reverse": _reverse,
    "compact": _compact,
    "keys": _keys,
    "values": _as_list,
    "count": _count,
}

LIST_COMPLEX_TRANSFORMS: dict[str, ComplexTransform] = {
    "slice": _slice,
    "chunk": _chunk,
    "group_by": _group_by,
    "pluck": _pluck,
    "where": _where,
    "sort_by": _sort_by,
}


# ============================================================================
# Step
# ============================================================================


class ListMapStep(UtilityStep):
    """Map every item of ``with.input`` through an optional filter, template and transforms.

    Inside ``filter`` and ``template`` the item is available as ``item`` (alias
    ``current``) and its position as ``index``.

    Examples:
        >>> from fragments.dsl.factory import StepFactory
        >>> step = StepFactory().create("list.map")
        >>> result = step.execute({"with": {"input": [1, 2, 3, 4, 5], "filter": "item > 2", "limit": 2}}, {})
        >>> result["output"], result["filtered_count"]
        ([3, 4], 2)
    """

    type_name = "list.map"
    deferred_fields = ("with.template", "with.filter", "template", "filter")
    simple_transforms: ClassVar = (LIST_SIMPLE_TRANSFORMS, BASE_SIMPLE_TRANSFORMS)
    complex_transforms: ClassVar = (LIST_COMPLEX_TRANSFORMS, BASE_COMPLEX_TRANSFORMS)

    def validate(self, config: Mapping[str, Any]) -> bool:
        return "input" in self.params(config)

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.validate_config(config)
        if "input" not in params:
            raise StepConfigError("list.map step requires 'input'")

        source = params["input"]
        template = params.get("template")
        condition = params.get("filter")
        limit = params.get("limit")
        transforms = params.get("transforms") or []

        if dry_run:
            logger.info("[DRY RUN] list.map over %s", type(source).__name__)
            return {
                "dry_run": True,
                "input_type": type(source).__name__,
                "has_template": template is not None,
                "has_filter": condition is not None,
                "limit": limit,
                "transforms_count": len(transforms) if isinstance(transforms, (list, tuple)) else 1,
                "would_map": True,
            }

        started = time.perf_counter()
        try:
            items = self.resolve_input(source, context)
            max_items = int(limit) if limit is not None and is_numeric(limit) else None
            output: list[Any] = []
            filtered = 0

            for index, item in items:
                if max_items is not None and len(output) >= max_items:
                    break
                item_context = self._item_context(context, item, index)
                if condition is not None and not self._accepts(str(condition), item_context):
                    filtered += 1
                    continue
                value = self.render_templates(template, item_context) if template is not None else item
                output.append(self.apply_transforms(value, transforms))

            return {
                "success": True,
                "output": output,
                "input_count": len(items),
                "output_count": len(output),
                "filtered_count": filtered,
                "processing_time_ms": elapsed_ms(started),
            }
        except (StepConfigError, ValueError, TypeError) as exc:
            logger.warning("list.map failed: %s", exc)
            return {
                "success": False,
                "error": str(exc),
                "processing_time_ms": elapsed_ms(started),
                "fallback": [],
            }

    def resolve_input(self, source: Any, context: Mapping[str, Any]) -> list[tuple[Any, Any]]:
        """Return ``(index, item)`` pairs for the configured input."""
        if isinstance(source, str):
            rendered = self.services.template.render_value(source, context)
            if isinstance(rendered, str) and rendered.strip().startswith("["):
                try:
                    rendered = json.loads(rendered)
                except ValueError:
                    rendered = [rendered]
            source = rendered if isinstance(rendered, (list, tuple, Mapping)) else [rendered]
        if isinstance(source, Mapping):
            return list(source.items())
        if isinstance(source, (list, tuple)):
            return list(enumerate(source))
        if isinstance(source, Sequence) and not isinstance(source, str):
            return list(enumerate(source))
        return [(0, source)]

    @staticmethod
    def _item_context(context: Mapping[str, Any], item: Any, index: Any) -> Mapping[str, Any]:
        return as_execution_context(context).with_locals(item=item, index=index, current=item)

    def _accepts(self, condition: str, item_context: Mapping[str, Any]) -> bool:
        try:
            return self.services.template.evaluate_condition(condition, item_context)
        except (ValueError, TypeError, KeyError) as exc:
            logger.debug("list.map filter %r rejected item: %s", condition, exc)
            return False


__all__ = [
    "LIST_COMPLEX_TRANSFORMS",
    "LIST_SIMPLE_TRANSFORMS",
    "ListMapStep",
]
