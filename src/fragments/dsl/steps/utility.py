"""Shared base for the data-shaping steps.

Transforms are looked up in a chain of dispatch tables, most specific
first. A step widens its vocabulary by putting its own table in front of
the base one:

>>> class ShoutStep(UtilityStep):
...     simple_transforms = ({"shout": lambda v: f"{v}!"}, BASE_SIMPLE_TRANSFORMS)
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, ClassVar

from fragments.dsl.base import Step
from fragments.dsl.exceptions import StepConfigError
from fragments.dsl.template import is_truthy, stringify
from fragments.utils import is_numeric, slugify, to_number, truncate

logger = logging.getLogger(__name__)

SimpleTransform = Callable[[Any], Any]
ComplexTransform = Callable[[Any, Any], Any]

#: Strategies accepted by :func:`deep_merge`.
MERGE_STRATEGIES = ("left_wins", "right_wins", "merge_arrays", "concatenate")


# ============================================================================
# Scalar helpers
# ============================================================================


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def _scalar(func: Callable[[str], Any]) -> SimpleTransform:
    """Apply ``func`` to strings and numbers, pass anything else through."""

    def apply(value: Any) -> Any:
        return func(str(value)) if _is_scalar(value) else value

    return apply


def _title_case(text: str) -> str:
    return re.sub(r"(^|\s)(\S)", lambda m: m.group(1) + m.group(2).upper(), text)


def _params_dict(params: Any, key: str) -> dict[str, Any]:
    if isinstance(params, Mapping):
        return dict(params)
    return {key: params}


def cast_value(value: Any, target: str) -> Any:
    """Convert ``value`` to a named type.

    Examples:
        >>> cast_value("42", "int"), cast_value("2.5", "float"), cast_value("x", "array")
        (42, 2.5, ['x'])
        >>> cast_value({"a": 1}, "json")
        '{"a": 1}'
    """
    kind = str(target).lower()
    if kind == "string":
        return stringify(value)
    if kind in ("int", "integer"):
        return int(to_number(value)) if is_numeric(value) else int(bool(value) if isinstance(value, bool) else 0)
    if kind in ("float", "double"):
        return float(to_number(value)) if is_numeric(value) else 0.0
    if kind in ("bool", "boolean"):
        return is_truthy(value)
    if kind == "array":
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, Mapping):
            return list(value.values())
        return [] if value is None else [value]
    if kind == "json":
        return json.dumps(value, ensure_ascii=False, default=str)
    raise StepConfigError(f"Unknown cast type: {target!r}")


# ============================================================================
# Base transform tables
# ============================================================================


def _truncate(value: Any, params: Any) -> Any:
    if not _is_scalar(value):
        return value
    options = _params_dict(params, "length")
    return truncate(str(value), int(options.get("length", 100)), str(options.get("suffix", "...")))


def _substring(value: Any, params: Any) -> Any:
    if not _is_scalar(value):
        return value
    options = _params_dict(params, "start")
    start = int(options.get("start", 0))
    length = options.get("length")
    text = str(value)
    return text[start:] if length is None else text[start : start + int(length)]


def _replace(value: Any, params: Any) -> Any:
    if not _is_scalar(value) or not isinstance(params, Mapping):
        return value
    return str(value).replace(str(params.get("search", "")), str(params.get("replace", "")))


def _format(value: Any, params: Any) -> Any:
    return str(params).replace("{value}", stringify(value))


BASE_SIMPLE_TRANSFORMS: dict[str, SimpleTransform] = {
    "uppercase": _scalar(str.upper),
    "lowercase": _scalar(str.lower),
    "trim": _scalar(str.strip),
    "title_case": _scalar(_title_case),
    "capitalize": _scalar(lambda s: s[:1].upper() + s[1:]),
    "slug": _scalar(slugify),
}

BASE_COMPLEX_TRANSFORMS: dict[str, ComplexTransform] = {
    "truncate": _truncate,
    "substring": _substring,
    "replace": _replace,
    "format": _format,
    "cast": cast_value,
}


# ============================================================================
# Deep merge
# ============================================================================


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def resolve_conflict(left: Any, right: Any, strategy: str) -> Any:
    """Resolve two non-mapping values that share a key."""
    if strategy == "left_wins":
        return left
    if strategy == "right_wins":
        return right
    if strategy == "merge_arrays":
        return _as_list(left) + _as_list(right)
    if strategy == "concatenate":
        return stringify(left) + stringify(right)
    raise StepConfigError(f"Unknown merge strategy: {strategy!r}. Available: {', '.join(MERGE_STRATEGIES)}")


def deep_merge(left: Mapping[str, Any], right: Mapping[str, Any], strategy: str = "right_wins") -> dict[str, Any]:
    """Merge two mappings, recursing where both sides hold mappings.

    Args:
        left: Base mapping.
        right: Mapping merged on top.
        strategy: Conflict policy for non-mapping values.

    Returns:
        A new mapping; inputs are not modified.

    Examples:
        >>> deep_merge({"a": 1, "n": {"x": 1}}, {"a": 2, "n": {"y": 2}})
        {'a': 2, 'n': {'x': 1, 'y': 2}}
        >>> deep_merge({"a": 1}, {"a": 2}, "left_wins")
        {'a': 1}
        >>> deep_merge({"a": 1}, {"a": 2}, "merge_arrays")
        {'a': [1, 2]}
    """
    if strategy not in MERGE_STRATEGIES:
        raise StepConfigError(f"Unknown merge strategy: {strategy!r}. Available: {', '.join(MERGE_STRATEGIES)}")
    merged = dict(left)
    for key, value in right.items():
        if key not in merged:
            merged[key] = value
        elif isinstance(merged[key], Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(merged[key], value, strategy)
        else:
            merged[key] = resolve_conflict(merged[key], value, strategy)
    return merged


def elapsed_ms(started: float) -> float:
    """Milliseconds since a ``time.perf_counter()`` reading, rounded to 0.01."""
    return round((time.perf_counter() - started) * 1000, 2)


def is_empty(value: Any) -> bool:
    """True for None, empty strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (Mapping, list, tuple, set)):
        return len(value) == 0
    return False


# ============================================================================
# Utility step
# ============================================================================


class UtilityStep(Step):
    """Base for steps that render, transform and merge data.

    Attributes:
        simple_transforms: Tables of ``name -> f(value)``, searched in order.
        complex_transforms: Tables of ``name -> f(value, params)``, searched in order.
    """

    simple_transforms: ClassVar[Sequence[Mapping[str, SimpleTransform]]] = (BASE_SIMPLE_TRANSFORMS,)
    complex_transforms: ClassVar[Sequence[Mapping[str, ComplexTransform]]] = (BASE_COMPLEX_TRANSFORMS,)

    def validate(self, config: Mapping[str, Any]) -> bool:
        return not is_empty(self.params(config))

    def validate_config(self, config: Mapping[str, Any]) -> dict[str, Any]:
        """Return the step parameters or raise when there are none."""
        params = self.params(config)
        if is_empty(params):
            raise StepConfigError(f"{self.type_name} step requires a 'with' block")
        return params

    def render_templates(self, data: Any, context: Mapping[str, Any]) -> Any:
        """Render every string leaf of ``data`` against ``context``."""
        return self.services.template.render_data(data, context)

    def apply_transforms(self, value: Any, transforms: Any) -> Any:
        """Apply a transform list in order.

        Each entry is a bare name (``"uppercase"``) or a ``{name: params}``
        mapping (``{"truncate": 20}``).
        """
        if not transforms:
            return value
        if isinstance(transforms, (str, Mapping)):
            transforms = [transforms]
        for transform in transforms:
            if isinstance(transform, str):
                value = self.apply_simple_transform(value, transform)
            elif isinstance(transform, Mapping):
                for name, params in transform.items():
                    value = self.apply_complex_transform(value, str(name), params)
            else:
                raise StepConfigError(f"Invalid transform: {transform!r}")
        return value

    def apply_simple_transform(self, value: Any, name: str) -> Any:
        for table in self.simple_transforms:
            if name in table:
                return table[name](value)
        logger.debug("%s: unknown transform '%s' ignored", self.type_name, name)
        return value

    def apply_complex_transform(self, value: Any, name: str, params: Any) -> Any:
        for table in self.complex_transforms:
            if name in table:
                return table[name](value, params)
        # a bare name written as {name: null}
        if params is None:
            return self.apply_simple_transform(value, name)
        logger.debug("%s: unknown transform '%s' ignored", self.type_name, name)
        return value

    def transform_names(self) -> list[str]:
        """All transform names this step understands."""
        names: set[str] = set()
        for table in (*self.simple_transforms, *self.complex_transforms):
            names.update(table)
        return sorted(names)

    @staticmethod
    def deep_merge(left: Mapping[str, Any], right: Mapping[str, Any], strategy: str = "right_wins") -> dict[str, Any]:
        return deep_merge(left, right, strategy)


__all__ = [
    "BASE_COMPLEX_TRANSFORMS",
    "BASE_SIMPLE_TRANSFORMS",
    "MERGE_STRATEGIES",
    "UtilityStep",
    "cast_value",
    "deep_merge",
    "elapsed_ms",
    "is_empty",
    "resolve_conflict",
]
