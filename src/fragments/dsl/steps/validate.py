"""``validate`` step: check context values against pipe-delimited rules.

Rules per field: ``required``, ``min:N``, ``max:N``, ``length:N``,
``numeric``, ``string``, ``in:a,b,c`` and ``not_starts_with:prefix``.
Unknown rules pass. Evaluation stops at the first failing rule of a field.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from fragments.dsl.base import Step
from fragments.dsl.exceptions import StepConfigError, StepValidationError
from fragments.dsl.template import is_truthy, lookup_path
from fragments.utils import is_numeric, to_number

logger = logging.getLogger(__name__)

RuleCheck = Callable[[str, Any, "str | None"], "str | None"]


def _int_param(param: str | None) -> int:
    try:
        return int(param or 0)
    except ValueError:
        raise StepConfigError(f"Rule parameter must be an integer, got {param!r}") from None


def _required(field: str, value: Any, param: str | None) -> str | None:
    if value is None or value == "" or (isinstance(value, (list, tuple, dict)) and not value):
        return f"The {field} field is required."
    return None


def _min(field: str, value: Any, param: str | None) -> str | None:
    bound = _int_param(param)
    if isinstance(value, str) and not is_numeric(value) and len(value) < bound:
        return f"The {field} field must be at least {bound} characters."
    if is_numeric(value) and to_number(value) < bound:
        return f"The {field} field must be at least {bound}."
    return None


def _max(field: str, value: Any, param: str | None) -> str | None:
    bound = _int_param(param)
    if isinstance(value, str) and not is_numeric(value) and len(value) > bound:
        return f"The {field} field must not exceed {bound} characters."
    if is_numeric(value) and to_number(value) > bound:
        return f"The {field} field must not exceed {bound}."
    return None


def _length(field: str, value: Any, param: str | None) -> str | None:
    if not isinstance(value, str):
        return f"The {field} field must be a string."
    size = _int_param(param)
    if len(value) != size:
        return f"The {field} field must be exactly {size} characters."
    return None


def _numeric(field: str, value: Any, param: str | None) -> str | None:
    return None if is_numeric(value) else f"The {field} field must be numeric."


def _string(field: str, value: Any, param: str | None) -> str | None:
    return None if isinstance(value, str) else f"The {field} field must be a string."


def _in(field: str, value: Any, param: str | None) -> str | None:
    options = (param or "").split(",")
    if value is None or str(value) not in options:
        return f"The {field} field must be one of: {', '.join(options)}."
    return None


def _not_starts_with(field: str, value: Any, param: str | None) -> str | None:
    if isinstance(value, str) and param and value.startswith(param):
        return f"The {field} field must not start with '{param}'."
    return None


#: Rule name -> check returning an error message or None.
RULES: dict[str, RuleCheck] = {
    "required": _required,
    "min": _min,
    "max": _max,
    "length": _length,
    "numeric": _numeric,
    "string": _string,
    "in": _in,
    "not_starts_with": _not_starts_with,
}


def check_rule(field: str, value: Any, rule: str) -> str | None:
    """Apply one ``name[:param]`` rule.

    Examples:
        >>> check_rule("title", "", "required")
        'The title field is required.'
        >>> check_rule("title", "/cmd", "not_starts_with:/")
        "The title field must not start with '/'."
        >>> check_rule("age", 20, "max:99") is None
        True
    """
    name, _, param = rule.strip().partition(":")
    check = RULES.get(name)
    if check is None:
        logger.debug("Unknown validation rule '%s' ignored", name)
        return None
    return check(field, value, param if param else None)


class ValidateStep(Step):
    """Validate context fields addressed by dotted paths.

    Parameters (``with``): ``rules`` (field -> rule string or list),
    ``messages`` (``field.rule`` or ``field`` -> custom message), and
    ``fail_on_error`` to raise instead of returning ``valid: false``.

    Examples:
        >>> from fragments.dsl.factory import StepFactory
        >>> step = StepFactory().create("validate")
        >>> result = step.execute({"with": {"rules": {"ctx.title": "required|min:3"}}}, {"ctx": {"title": "ab"}})
        >>> result["valid"], result["errors"]
        (False, {'ctx.title': ['The ctx.title field must be at least 3 characters.']})
    """

    type_name = "validate"

    def validate(self, config: Mapping[str, Any]) -> bool:
        return isinstance(self.params(config).get("rules"), Mapping)

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        rules = params.get("rules")
        if not rules or not isinstance(rules, Mapping):
            raise StepConfigError("validate step requires 'rules'")
        messages = params.get("messages") or {}

        if dry_run:
            logger.info("[DRY RUN] validate (%d fields)", len(rules))
            return {"dry_run": True, "would_validate": True, "rules": dict(rules)}

        errors: dict[str, list[str]] = {}
        validated: dict[str, Any] = {}
        for field, rule_spec in rules.items():
            field = str(field)
            value = lookup_path(context, field)
            rule_list = rule_spec.split("|") if isinstance(rule_spec, str) else list(rule_spec or [])
            for rule in rule_list:
                message = check_rule(field, value, str(rule))
                if message is not None:
                    rule_name = str(rule).partition(":")[0].strip()
                    errors[field] = [messages.get(f"{field}.{rule_name}") or messages.get(field) or message]
                    break
            else:
                validated[field] = value

        if errors and is_truthy(params.get("fail_on_error", False)):
            raise StepValidationError(self.type_name, [msg for field_errors in errors.values() for msg in field_errors])
        return {
            "valid": not errors,
            "errors": errors,
            "validated_data": validated,
            "error_count": len(errors),
        }


__all__ = [
    "RULES",
    "ValidateStep",
    "check_rule",
]
