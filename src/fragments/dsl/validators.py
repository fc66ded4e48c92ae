"""Input validation for the fragments.dsl module.

Field names and operators are checked here before any query predicate is
built. Nothing outside these allow-lists is ever interpolated into a query.
"""

from __future__ import annotations

import re
from typing import Any

from fragments.dsl.exceptions import StepConfigError

# ============================================================================
# Constants - Hard Limits
# ============================================================================

#: Pattern for query field names, matched against the whole name; a dot
#: denotes a JSON column path.
FIELD_NAME_PATTERN = re.compile(r"[a-zA-Z0-9_.]+")

#: Maximum field name length.
MAX_FIELD_NAME_LENGTH = 64

#: Operators accepted in query conditions (upper case).
ALLOWED_OPERATORS = frozenset(
    {
        "=",
        "!=",
        "<>",
        "<",
        ">",
        "<=",
        ">=",
        "LIKE",
        "NOT LIKE",
        "IN",
        "NOT IN",
        "IS NULL",
        "IS NOT NULL",
    }
)

#: Operators that take a list value.
LIST_OPERATORS = frozenset({"IN", "NOT IN"})

#: Operators that take no value.
NULL_OPERATORS = frozenset({"IS NULL", "IS NOT NULL"})

#: Model names the CRUD steps may touch.
ALLOWED_MODELS = frozenset({"bookmark", "chat_session", "fragment", "vault_routing_rule"})

#: Pattern for step type strings (e.g. ``model.query``).
STEP_TYPE_PATTERN = re.compile(r"[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*")

#: Pattern for step ids referenced as ``steps.<id>``.
STEP_ID_PATTERN = re.compile(r"[a-zA-Z0-9_-]+")

#: Maximum step id length.
MAX_STEP_ID_LENGTH = 64

#: Maximum number of steps in one command.
MAX_COMMAND_STEPS = 100

#: Maximum nesting depth of conditional branches.
MAX_BRANCH_DEPTH = 8

#: Maximum rows a query step may return.
MAX_QUERY_LIMIT = 500

#: Pattern for ``module.path:Name`` import targets.
IMPORT_TARGET_PATTERN = re.compile(r"[a-zA-Z_][a-zA-Z0-9_.]*:[a-zA-Z_][a-zA-Z0-9_]*")


# ============================================================================
# Validation Functions
# ============================================================================


def validate_field_name(field: Any) -> str:
    """Validate a query field name.

    Args:
        field: Field name, optionally a dotted JSON path.

    Returns:
        The validated field name (unchanged).

    Raises:
        StepConfigError: If the name contains disallowed characters.

    Examples:
        >>> validate_field_name("state.status")
        'state.status'
        >>> validate_field_name("id; DROP TABLE")
        Traceback (most recent call last):
            ...
        fragments.dsl.exceptions.StepConfigError: Invalid field name: 'id; DROP TABLE'
    """
    if not isinstance(field, str) or not field:
        raise StepConfigError(f"Invalid field name: {field!r}")
    if len(field) > MAX_FIELD_NAME_LENGTH:
        raise StepConfigError(f"Field name too long (max {MAX_FIELD_NAME_LENGTH} chars)")
    if not FIELD_NAME_PATTERN.fullmatch(field):
        raise StepConfigError(f"Invalid field name: {field!r}")
    return field


def validate_operator(operator: Any) -> str:
    """Validate and normalize a query operator.

    Args:
        operator: Operator string, case-insensitive.

    Returns:
        The upper-cased operator.

    Raises:
        StepConfigError: If the operator is not allow-listed.

    Examples:
        >>> validate_operator("like")
        'LIKE'
        >>> validate_operator("is not null")
        'IS NOT NULL'
    """
    if not isinstance(operator, str):
        raise StepConfigError(f"Invalid operator: {operator!r}")
    normalized = " ".join(operator.upper().split())
    if normalized not in ALLOWED_OPERATORS:
        raise StepConfigError(f"Invalid operator: {operator!r}")
    return normalized


def validate_model_name(model: Any, allowed: frozenset[str] = ALLOWED_MODELS) -> str:
    """Validate a model name against an allow-list.

    Examples:
        >>> validate_model_name("fragment")
        'fragment'
    """
    if not model:
        raise StepConfigError("Model name is required")
    if model not in allowed:
        raise StepConfigError(f"Unknown model: {model!r}. Available: {', '.join(sorted(allowed))}")
    return str(model)


def validate_order_direction(direction: Any) -> str:
    """Normalize an ordering direction to ``asc`` or ``desc``.

    Examples:
        >>> validate_order_direction("DESC")
        'desc'
    """
    normalized = str(direction).lower()
    if normalized not in ("asc", "desc"):
        raise StepConfigError(f"Invalid order direction: {direction!r}")
    return normalized


def validate_step_type(step_type: Any) -> str:
    """Validate a step type string used as a registry key.

    Examples:
        >>> validate_step_type("model.query")
        'model.query'
    """
    if not isinstance(step_type, str) or not STEP_TYPE_PATTERN.fullmatch(step_type):
        raise StepConfigError(f"Invalid step type: {step_type!r}")
    return step_type


def validate_step_id(step_id: Any) -> str:
    """Validate a step id.

    Examples:
        >>> validate_step_id("fetch-recent")
        'fetch-recent'
    """
    if not isinstance(step_id, str) or not step_id:
        raise StepConfigError(f"Invalid step id: {step_id!r}")
    if len(step_id) > MAX_STEP_ID_LENGTH:
        raise StepConfigError(f"Step id too long (max {MAX_STEP_ID_LENGTH} chars)")
    if not STEP_ID_PATTERN.fullmatch(step_id):
        raise StepConfigError(f"Invalid step id: {step_id!r}")
    return step_id


def validate_limit(limit: Any, default: int) -> int:
    """Validate a row limit, clamping nothing: out of range is an error.

    Examples:
        >>> validate_limit(None, 25)
        25
        >>> validate_limit("10", 25)
        10
    """
    if limit is None:
        return default
    try:
        value = int(limit)
    except (TypeError, ValueError):
        raise StepConfigError(f"Invalid limit: {limit!r}") from None
    if value < 1 or value > MAX_QUERY_LIMIT:
        raise StepConfigError(f"Limit must be between 1 and {MAX_QUERY_LIMIT}, got {value}")
    return value


def validate_offset(offset: Any) -> int:
    """Validate a non-negative row offset."""
    if offset is None:
        return 0
    try:
        value = int(offset)
    except (TypeError, ValueError):
        raise StepConfigError(f"Invalid offset: {offset!r}") from None
    if value < 0:
        raise StepConfigError(f"Offset must be >= 0, got {value}")
    return value


def validate_import_target(target: Any) -> str:
    """Validate a ``module.path:Name`` import target.

    Examples:
        >>> validate_import_target("myapp.jobs:EnrichFragment")
        'myapp.jobs:EnrichFragment'
    """
    if not isinstance(target, str) or not IMPORT_TARGET_PATTERN.fullmatch(target):
        raise StepConfigError(f"Invalid import target format: {target!r} (expected 'module.path:Name')")
    return target


__all__ = [
    "ALLOWED_MODELS",
    "ALLOWED_OPERATORS",
    "FIELD_NAME_PATTERN",
    "LIST_OPERATORS",
    "MAX_BRANCH_DEPTH",
    "MAX_COMMAND_STEPS",
    "MAX_QUERY_LIMIT",
    "NULL_OPERATORS",
    "validate_field_name",
    "validate_import_target",
    "validate_limit",
    "validate_model_name",
    "validate_offset",
    "validate_operator",
    "validate_order_direction",
    "validate_step_id",
    "validate_step_type",
]
