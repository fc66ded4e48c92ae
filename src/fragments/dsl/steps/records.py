"""Per-model write policies and query parsing shared by the CRUD steps.

A :class:`ModelPolicy` is the data-integrity boundary of a model: the
fields a step may write (``fillable``), the fields a create must supply
(``required``), defaults applied on create, semantic validation and the
extra keys added when a record is returned.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from fragments.dsl.base import Step
from fragments.dsl.exceptions import StepConfigError, StepValidationError
from fragments.dsl.validators import (
    LIST_OPERATORS,
    NULL_OPERATORS,
    validate_field_name,
    validate_model_name,
    validate_operator,
    validate_order_direction,
)
from fragments.store.base import Ordering, Predicate
from fragments.utils import is_numeric, strip_tags, truncate

logger = logging.getLogger(__name__)

#: Valid values of ``fragment.type``.
FRAGMENT_TYPES = ("note", "todo", "log", "meeting", "contact", "link", "file", "calendar_event")

#: Valid values of ``fragment.inbox_status``.
INBOX_STATUSES = ("pending", "accepted", "archived", "skipped")

#: Characters kept in a fragment snippet.
SNIPPET_LENGTH = 150

Validator = Callable[[Mapping[str, Any], bool], list[str]]
Formatter = Callable[[dict[str, Any]], dict[str, Any]]


# ============================================================================
# Model policies
# ============================================================================


def _in_range(data: Mapping[str, Any], name: str, low: int, high: int) -> list[str]:
    value = data.get(name)
    if value is None:
        return []
    if not is_numeric(value) or not low <= float(value) <= high:
        return [f"{name.capitalize()} must be between {low} and {high}"]
    return []


def _validate_fragment(data: Mapping[str, Any], creating: bool) -> list[str]:
    errors: list[str] = []
    if data.get("type") is not None and data["type"] not in FRAGMENT_TYPES:
        errors.append(f"Invalid fragment type: {data['type']}")
    errors += _in_range(data, "importance", 1, 5)
    errors += _in_range(data, "confidence", 1, 5)
    if data.get("inbox_status") is not None and data["inbox_status"] not in INBOX_STATUSES:
        errors.append(f"Invalid inbox_status: {data['inbox_status']}")
    return errors


def _validate_chat_session(data: Mapping[str, Any], creating: bool) -> list[str]:
    errors = [f"{name} must be numeric" for name in ("vault_id", "project_id") if data.get(name) is not None and not is_numeric(data[name])]
    if not creating:
        errors += [f"{name} must be boolean" for name in ("is_active", "is_pinned") if name in data and not isinstance(data[name], bool)]
        if data.get("sort_order") is not None and not is_numeric(data["sort_order"]):
            errors.append("sort_order must be numeric")
    return errors


def _validate_bookmark(data: Mapping[str, Any], creating: bool) -> list[str]:
    if data.get("fragment_ids") is not None and not isinstance(data["fragment_ids"], (list, tuple)):
        return ["fragment_ids must be an array"]
    return []


def _no_validation(data: Mapping[str, Any], creating: bool) -> list[str]:
    return []


def snippet(text: Any) -> str:
    """Tag-free preview of a message.

    Examples:
        >>> snippet("<p>Hello</p>")
        'Hello'
    """
    if not text:
        return ""
    return truncate(strip_tags(text), SNIPPET_LENGTH)


def _format_fragment(record: dict[str, Any]) -> dict[str, Any]:
    record["snippet"] = snippet(record.get("message"))
    return record


def _format_chat_session(record: dict[str, Any]) -> dict[str, Any]:
    record["display_title"] = record.get("custom_name") or record.get("title") or f"Chat #{record.get('id')}"
    messages = record.get("messages") or []
    last = messages[-1] if isinstance(messages, list) and messages else None
    content = last.get("content", "") if isinstance(last, Mapping) else (last or "")
    record["last_message_preview"] = truncate(strip_tags(content), 50) if content else ""
    return record


def _format_bookmark(record: dict[str, Any]) -> dict[str, Any]:
    record["fragment_count"] = len(record.get("fragment_ids") or [])
    return record


@dataclass(frozen=True, slots=True)
class ModelPolicy:
    """Write rules and output formatting of one model.

    Attributes:
        name: Model name.
        fillable: Fields a step may write from caller data.
        required: Fields a create must supply (non-empty).
        defaults: Values applied on create when a field is missing.
        validator: Returns semantic validation errors.
        formatter: Adds computed keys to a returned record.
    """

    name: str
    fillable: tuple[str, ...]
    required: tuple[str, ...] = ()
    defaults: Mapping[str, Any] = field(default_factory=dict)
    validator: Validator = _no_validation
    formatter: Formatter = lambda record: record  # noqa: E731

    def filter_fillable(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Keep only the fillable fields of ``data``."""
        dropped = sorted(set(data) - set(self.fillable))
        if dropped:
            logger.debug("Ignoring non-fillable %s field(s): %s", self.name, ", ".join(dropped))
        return {key: value for key, value in data.items() if key in self.fillable}

    def apply_defaults(self, data: Mapping[str, Any]) -> dict[str, Any]:
        merged = dict(data)
        for key, value in self.defaults.items():
            if merged.get(key) is None:
                # fresh copies so records never share a default list
                merged[key] = json.loads(json.dumps(value))
        return merged

    def validate(self, data: Mapping[str, Any], *, creating: bool) -> list[str]:
        """Return every validation error of ``data``."""
        errors: list[str] = []
        if creating:
            errors += [
                f"Required field '{name}' is missing or empty"
                for name in self.required
                if data.get(name) is None or data.get(name) == ""
            ]
        return errors + self.validator(data, creating)

    def check(self, step_type: str, data: Mapping[str, Any], *, creating: bool) -> None:
        """Raise StepValidationError with every error of ``data``."""
        errors = self.validate(data, creating=creating)
        if errors:
            raise StepValidationError(step_type, errors)

    def format(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return self.formatter(dict(record))


MODEL_POLICIES: dict[str, ModelPolicy] = {
    "bookmark": ModelPolicy(
        name="bookmark",
        fillable=("name", "fragment_ids", "vault_id", "project_id"),
        required=("name",),
        defaults={"fragment_ids": []},
        validator=_validate_bookmark,
        formatter=_format_bookmark,
    ),
    "chat_session": ModelPolicy(
        name="chat_session",
        fillable=(
            "vault_id",
            "project_id",
            "title",
            "custom_name",
            "summary",
            "messages",
            "metadata",
            "is_active",
            "is_pinned",
            "sort_order",
            "model_provider",
            "model_name",
        ),
        required=("vault_id",),
        defaults={"is_active": True, "is_pinned": False, "messages": [], "metadata": {}},
        validator=_validate_chat_session,
        formatter=_format_chat_session,
    ),
    "fragment": ModelPolicy(
        name="fragment",
        fillable=(
            "message",
            "title",
            "type",
            "tags",
            "metadata",
            "state",
            "vault",
            "project_id",
            "importance",
            "confidence",
            "pinned",
            "inbox_status",
        ),
        required=("message",),
        defaults={"type": "note", "inbox_status": "pending", "tags": [], "state": {}},
        validator=_validate_fragment,
        formatter=_format_fragment,
    ),
    "vault_routing_rule": ModelPolicy(
        name="vault_routing_rule",
        fillable=(
            "name",
            "match_type",
            "match_value",
            "conditions",
            "target_vault_id",
            "target_project_id",
            "scope_vault_id",
            "scope_project_id",
            "priority",
            "is_active",
            "notes",
        ),
        required=("name", "match_type", "target_vault_id"),
    ),
}


def get_policy(model: Any) -> ModelPolicy:
    """Validate ``model`` and return its policy."""
    return MODEL_POLICIES[validate_model_name(model, frozenset(MODEL_POLICIES))]


# ============================================================================
# Query parsing
# ============================================================================


def _decode(value: Any) -> Any:
    if isinstance(value, str) and value.strip()[:1] in ("[", "{"):
        try:
            return json.loads(value)
        except ValueError as exc:
            raise StepConfigError(f"Invalid JSON: {truncate(value, 80)}") from exc
    return value


def parse_conditions(raw: Any) -> list[Predicate]:
    """Turn ``with.conditions`` into validated predicates.

    Accepts a list of ``{field, operator, value}`` mappings, a
    ``{field: value}`` mapping (equality), or either as a JSON string.

    Examples:
        >>> parse_conditions([{"field": "state.status", "operator": "in", "value": ["open"]}])
        [Predicate(field='state.status', operator='IN', value=['open'])]
        >>> parse_conditions({"type": "todo"})
        [Predicate(field='type', operator='=', value='todo')]
    """
    conditions = _decode(raw)
    if not conditions:
        return []
    if isinstance(conditions, Mapping):
        if "field" in conditions:
            conditions = [conditions]
        else:
            conditions = [{"field": key, "value": value} for key, value in conditions.items()]
    if not isinstance(conditions, (list, tuple)):
        raise StepConfigError(f"Conditions must be a list or mapping, got {type(conditions).__name__}")

    predicates: list[Predicate] = []
    for condition in conditions:
        if not isinstance(condition, Mapping) or "field" not in condition:
            logger.debug("Skipping malformed condition: %r", condition)
            continue
        name = validate_field_name(condition["field"])
        operator = validate_operator(condition.get("operator", "="))
        value = condition.get("value")
        if operator in LIST_OPERATORS and not isinstance(value, (list, tuple)):
            raise StepConfigError(f"Value for {operator} operator must be an array")
        if operator in NULL_OPERATORS:
            value = None
        predicates.append(Predicate(name, operator, list(value) if isinstance(value, tuple) else value))
    return predicates


def _parse_order_term(term: Any) -> Ordering:
    if isinstance(term, str):
        parts = term.split()
        if not parts:
            raise StepConfigError("Empty order term")
        direction = parts[1] if len(parts) > 1 else "desc"
        return Ordering(validate_field_name(parts[0]), validate_order_direction(direction))
    if isinstance(term, Mapping):
        name = term.get("field", "created_at")
        return Ordering(validate_field_name(name), validate_order_direction(term.get("direction", "desc")))
    raise StepConfigError(f"Invalid order term: {term!r}")


def parse_order(raw: Any) -> list[Ordering]:
    """Parse ``with.order`` (string, ``"field DESC"``, mapping, list, or JSON).

    Examples:
        >>> parse_order("title asc")
        [Ordering(field='title', direction='asc')]
        >>> parse_order([{"field": "importance"}, "id"])
        [Ordering(field='importance', direction='desc'), Ordering(field='id', direction='desc')]
    """
    order = _decode(raw)
    if not order:
        return []
    if isinstance(order, (list, tuple)):
        return [_parse_order_term(term) for term in order]
    return [_parse_order_term(order)]


def parse_relations(raw: Any) -> list[str]:
    relations = _decode(raw)
    if not relations:
        return []
    if isinstance(relations, str):
        relations = [part.strip() for part in relations.split(",") if part.strip()]
    if not isinstance(relations, (list, tuple)):
        raise StepConfigError("relations must be a list")
    return [validate_field_name(str(name)) for name in relations]


def parse_data(raw: Any, step_type: str) -> dict[str, Any]:
    data = _decode(raw)
    if not isinstance(data, Mapping):
        raise StepConfigError(f"{step_type} step requires 'data' to be a mapping")
    return dict(data)


# ============================================================================
# Base step
# ============================================================================


class RecordStep(Step):
    """Base for steps that read or write store records.

    ``model`` and the other parameters are read from the ``with`` block or
    inline fields.
    """

    def validate(self, config: Mapping[str, Any]) -> bool:
        return self.params(config).get("model") in MODEL_POLICIES

    def policy_for(self, params: Mapping[str, Any]) -> ModelPolicy:
        if not params.get("model"):
            raise StepConfigError(f"{self.type_name} step requires 'model'")
        return get_policy(params["model"])

    def target_predicates(self, params: Mapping[str, Any]) -> list[Predicate]:
        """Predicates selecting records by ``id`` or ``conditions``."""
        record_id = params.get("id")
        if record_id not in (None, ""):
            return [Predicate("id", "=", record_id)]
        predicates = parse_conditions(params.get("conditions"))
        if not predicates:
            raise StepConfigError("Either id or conditions must be provided")
        return predicates

    @staticmethod
    def describe(predicates: Sequence[Predicate]) -> list[dict[str, Any]]:
        return [{"field": p.field, "operator": p.operator, "value": p.value} for p in predicates]


__all__ = [
    "FRAGMENT_TYPES",
    "INBOX_STATUSES",
    "MODEL_POLICIES",
    "ModelPolicy",
    "RecordStep",
    "get_policy",
    "parse_conditions",
    "parse_data",
    "parse_order",
    "parse_relations",
    "snippet",
]
