"""Template rendering and expression evaluation for step configuration.

Templates are rendered by a :class:`jinja2.sandbox.SandboxedEnvironment`.
A thin layer on top keeps the command DSL dialect:

- ``{{ expr }}`` placeholders with ``name:arg1,arg2`` filter arguments
  (``{{ ctx.tags | join:', ' }}``) next to the jinja call form
- ``{% if %}`` / ``{% elif %}`` conditions, comparisons, ``and``/``or``/``not``
  (also ``&&``, ``||``, ``!``) and ``cond ? a : b`` ternaries with loose,
  numeric-aware comparison and string truthiness (``"false"`` and ``"0"``
  are false)
- ``+ - * /`` coerce numeric strings; division by zero yields ``0``
- a sole placeholder keeps the raw value in :meth:`TemplateEngine.render_value`

Dots resolve mapping keys before attributes, so ``steps.x.output.items`` is
the ``items`` key when one exists and the dict method otherwise.

Examples:
    >>> engine = TemplateEngine()
    >>> engine.render("Hello {{ ctx.name | upper }}", {"ctx": {"name": "ada"}})
    'Hello ADA'
    >>> engine.evaluate_condition("items | length > 1", {"items": [1, 2]})
    True
"""

from __future__ import annotations

import functools
import json
import logging
import operator
import re
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

from jinja2 import ChainableUndefined, Template, TemplateError, Undefined
from jinja2 import TemplateSyntaxError as JinjaSyntaxError
from jinja2.environment import TemplateExpression
from jinja2.sandbox import SandboxedEnvironment

from fragments.dsl.exceptions import TemplateRenderError, TemplateSyntaxError
from fragments.utils import is_numeric, parse_datetime, slugify, to_number, truncate

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(.+?)\s*\}\}", re.DOTALL)
_SOLE_PLACEHOLDER = re.compile(r"^\s*\{\{\s*(.+?)\s*\}\}\s*$", re.DOTALL)
_CONDITION_TAG = re.compile(r"\{%(-?)\s*(if|elif)\s+(.*?)\s*(-?)%\}", re.DOTALL)

# Matched against quote-masked text so literals never split an expression.
_TERNARY = re.compile(r"^(.+?)\s\?\s(.+?)\s:\s(.+)$", re.DOTALL)
_OR = re.compile(r"\s+(?:or|\|\|)\s+")
_AND = re.compile(r"\s+(?:and|&&)\s+")
_LENGTH_CONDITION = re.compile(r"^(.+?)\s*\|\s*length\s*(==|!=|>=|<=|>|<)\s*(\d+)$", re.DOTALL)
_COMPARISON = re.compile(r"^(.+?)\s*(==|!=|>=|<=|>|<)\s*(.+)$", re.DOTALL)
_PIPE = re.compile(r"(?<!\|)\|(?!\|)")
_COMMA = re.compile(r",")
_NULL = re.compile(r"(?<![.\w])null(?!\w)", re.IGNORECASE)
_FILTER_SPEC = re.compile(r"\s*([A-Za-z_]\w*)(.*)$", re.DOTALL)

_MASK = "\x00"

_ORDERING: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}


# ============================================================================
# Value helpers
# ============================================================================


def _native(value: Any) -> Any:
    """Map jinja's undefined marker to None."""
    return None if isinstance(value, Undefined) else value


def stringify(value: Any) -> str:
    """Render a value for text output.

    Examples:
        >>> stringify(None), stringify(True), stringify([1, 2])
        ('', 'true', '[1, 2]')
    """
    if value is None or isinstance(value, Undefined):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(_plain(value), ensure_ascii=False, default=str)
    return str(value)


def _plain(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def is_truthy(value: Any) -> bool:
    """Truthiness used by conditions.

    Examples:
        >>> is_truthy("0"), is_truthy("false"), is_truthy("no"), is_truthy([])
        (False, False, True, False)
    """
    if value is None or isinstance(value, Undefined):
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "null")
    if isinstance(value, (Mapping, list, tuple, set)):
        return len(value) > 0
    return True


def value_length(value: Any) -> int:
    """Length of a collection or string; 0 for None."""
    if value is None:
        return 0
    if isinstance(value, (str, Mapping, list, tuple, set)):
        return len(value)
    return len(stringify(value))


def _loose_equals(left: Any, right: Any) -> bool:
    if is_numeric(left) and is_numeric(right):
        return to_number(left) == to_number(right)
    if isinstance(left, bool) or isinstance(right, bool):
        return is_truthy(left) == is_truthy(right)
    if left is None or right is None:
        return left in (None, "") and right in (None, "")
    if isinstance(left, (Mapping, list, tuple)) or isinstance(right, (Mapping, list, tuple)):
        return left == right
    return stringify(left) == stringify(right)


def compare_values(left: Any, op: str, right: Any) -> bool:
    """Compare two operands with numeric coercion.

    Numeric-looking operands compare as numbers, everything else as text.

    Examples:
        >>> compare_values("5", ">", 3)
        True
        >>> compare_values("apple", "<", "banana")
        True
        >>> compare_values(1, "==", "1.0")
        True
    """
    left, right = _native(left), _native(right)
    if op in ("==", "!="):
        equal = _loose_equals(left, right)
        return equal if op == "==" else not equal
    if op not in _ORDERING:
        raise TemplateSyntaxError(f"Unknown comparison operator: {op!r}")
    if is_numeric(left) and is_numeric(right):
        return _ORDERING[op](to_number(left), to_number(right))
    return _ORDERING[op](stringify(left), stringify(right))


def _arithmetic(left: Any, op: str, right: Any) -> Any:
    """Apply ``+ - * /`` the loose way: numeric strings count, ``x / 0`` is 0.

    Examples:
        >>> _arithmetic("4", "*", 2), _arithmetic("a", "+", 1), _arithmetic(3, "/", 0)
        (8, 'a1', 0)
    """
    if op == "+" and not (is_numeric(left) and is_numeric(right)):
        return stringify(left) + stringify(right)
    a = to_number(left) if is_numeric(left) else 0
    b = to_number(right) if is_numeric(right) else 0
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        return a * b
    if b == 0:
        return 0
    result = a / b
    return int(result) if isinstance(a, int) and isinstance(b, int) and result.is_integer() else result


def _mask_quotes(text: str) -> str:
    """Replace characters inside quoted literals with a mask character.

    The result has the same length as ``text``, so regex match offsets on
    the masked string slice the original correctly.
    """
    out: list[str] = []
    quote: str | None = None
    for char in text:
        if quote is not None:
            if char == quote:
                quote = None
                out.append(char)
            else:
                out.append(_MASK)
        elif char in ("'", '"'):
            quote = char
            out.append(char)
        else:
            out.append(char)
    return "".join(out)


def _split(text: str, pattern: re.Pattern[str]) -> list[str]:
    masked = _mask_quotes(text)
    parts: list[str] = []
    start = 0
    for match in pattern.finditer(masked):
        parts.append(text[start : match.start()])
        start = match.end()
    parts.append(text[start:])
    return parts


def _groups(text: str, match: re.Match[str]) -> list[str]:
    return [text[match.start(i) : match.end(i)] for i in range(1, (match.lastindex or 0) + 1)]


def _jinja_literal(token: str) -> str:
    """Turn a ``filter:arg`` argument into jinja source.

    Arguments are literals: quoted text, numbers, or bare words read as text.

    Examples:
        >>> _jinja_literal("'a, b'"), _jinja_literal("007"), _jinja_literal("none")
        ('"a, b"', '7', '"none"')
    """
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in ("'", '"'):
        return json.dumps(token[1:-1])
    if is_numeric(token):
        return repr(to_number(token))
    return json.dumps(token)


def _is_condition(expression: str) -> bool:
    masked = _mask_quotes(expression)
    return bool(
        _OR.search(masked)
        or _AND.search(masked)
        or _COMPARISON.match(masked)
        or masked.startswith("not ")
        or (masked.startswith("!") and not masked.startswith("!="))
    )


# ============================================================================
# Filters
# ============================================================================


def _filter_default(value: Any, fallback: Any = "") -> Any:
    if value is None or value == "" or (isinstance(value, (Mapping, list, tuple)) and not value):
        return fallback
    return value


def _filter_take(value: Any, count: Any = 1) -> Any:
    size = int(count)
    if isinstance(value, (list, tuple, str)):
        return value[:size]
    return value


def _filter_slice(value: Any, start: Any = 0, length: Any = None) -> Any:
    if not isinstance(value, (list, tuple, str)):
        return value
    begin = int(start)
    if length is None:
        return value[begin:]
    return value[begin : begin + int(length)]


def _filter_date(value: Any, fmt: Any = "%Y-%m-%d %H:%M:%S") -> str:
    if value is None or value == "":
        return ""
    try:
        return parse_datetime(value).strftime(str(fmt))
    except ValueError:
        return stringify(value)


def _filter_jsonpath(value: Any, path: Any = "$") -> Any:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    dotted = str(path).strip()
    if dotted.startswith("$"):
        dotted = dotted[1:].lstrip(".")
    return lookup_path(value, dotted) if dotted else value


def _filter_first(value: Any) -> Any:
    if isinstance(value, (list, tuple, str)):
        return value[0] if value else None
    if isinstance(value, Mapping):
        return next(iter(value.values()), None)
    return value


def _filter_last(value: Any) -> Any:
    if isinstance(value, (list, tuple, str)):
        return value[-1] if value else None
    if isinstance(value, Mapping):
        values = list(value.values())
        return values[-1] if values else None
    return value


def _filter_join(value: Any, separator: Any = ", ") -> Any:
    if isinstance(value, (list, tuple)):
        return str(separator).join(stringify(v) for v in value)
    return value


def _filter_capitalize(value: Any) -> str:
    text = stringify(value)
    return text[:1].upper() + text[1:]


def _filter_truncate(value: Any, length: Any = 100, suffix: Any = "...") -> str:
    return truncate(stringify(value), int(length), str(suffix))


#: Built-in filters: name -> callable(value, *args).
DEFAULT_FILTERS: dict[str, Callable[..., Any]] = {
    "trim": lambda v: stringify(v).strip(),
    "lower": lambda v: stringify(v).lower(),
    "upper": lambda v: stringify(v).upper(),
    "slug": lambda v: slugify(stringify(v)),
    "default": _filter_default,
    "take": _filter_take,
    "date": _filter_date,
    "jsonpath": _filter_jsonpath,
    "json": lambda v: json.dumps(_plain(v), ensure_ascii=False, default=str),
    "length": value_length,
    "first": _filter_first,
    "last": _filter_last,
    "join": _filter_join,
    "capitalize": _filter_capitalize,
    "truncate": _filter_truncate,
    "slice": _filter_slice,
}


def lookup_path(data: Any, path: str) -> Any:
    """Resolve a dot path over mappings and sequences.

    Examples:
        >>> lookup_path({"a": {"b": [10, 20]}}, "a.b.1")
        20
        >>> lookup_path({"a": 1}, "a.missing") is None
        True
    """
    current = data
    for segment in path.split("."):
        if segment == "":
            return None
        if isinstance(current, Mapping):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, str) and segment.lstrip("-").isdigit():
            index = int(segment)
            if -len(current) <= index < len(current):
                current = current[index]
            else:
                return None
        else:
            return None
    return current




def _sub_unquoted(pattern: re.Pattern[str], replacement: str, text: str) -> str:
    masked = _mask_quotes(text)
    out: list[str] = []
    start = 0
    for match in pattern.finditer(masked):
        out.append(text[start : match.start()])
        out.append(replacement)
        start = match.end()
    out.append(text[start:])
    return "".join(out)


def _undefined_as_none(func: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap a filter so missing values reach it as None."""

    @functools.wraps(func)
    def apply(value: Any, *args: Any, **kwargs: Any) -> Any:
        return func(_native(value), *args, **kwargs)

    return apply


# ============================================================================
# Engine
# ============================================================================


class _DslEnvironment(SandboxedEnvironment):
    """Sandbox that prefers mapping keys over attributes and applies loose arithmetic."""

    intercepted_binops = frozenset(["+", "-", "*", "/"])

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping) and attribute in obj:
            return obj[attribute]
        return super().getattr(obj, attribute)

    def call_binop(self, context: Any, op: str, left: Any, right: Any) -> Any:
        return _arithmetic(_native(left), op, _native(right))


class TemplateEngine:
    """Render templates and evaluate expressions against a context mapping.

    DSL expressions are compiled to jinja source once and cached, so repeated
    renders of the same step configuration only pay for the jinja call.

    Args:
        filters: Extra filters merged over the built-in ones.

    Examples:
        >>> engine = TemplateEngine()
        >>> engine.render_value("{{ steps.a.output }}", {"steps": {"a": {"output": [1]}}})
        [1]
        >>> engine.render("{% if ctx.n > 2 %}big{% else %}small{% endif %}", {"ctx": {"n": 3}})
        'big'
        >>> engine.render("{% for t in tags %}[{{ t | upper }}]{% endfor %}", {"tags": ["a", "b"]})
        '[A][B]'
    """

    def __init__(self, filters: Mapping[str, Callable[..., Any]] | None = None) -> None:
        self._env = _DslEnvironment(
            undefined=ChainableUndefined,
            finalize=stringify,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self._env.globals.update(_compare=compare_values, _truthy=is_truthy)
        self._templates: dict[str, Template] = {}
        self._expressions: dict[str, TemplateExpression] = {}
        for name, func in {**DEFAULT_FILTERS, **(filters or {})}.items():
            self.register_filter(name, func)

    def register_filter(self, name: str, func: Callable[..., Any]) -> None:
        """Add or replace a filter."""
        self._env.filters[name] = _undefined_as_none(func)
        # compiled sources depend on which filters exist
        self._templates.clear()
        self._expressions.clear()

    @property
    def filter_names(self) -> list[str]:
        """Sorted names of the available filters, jinja built-ins included."""
        return sorted(self._env.filters)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, template: Any, context: Mapping[str, Any]) -> str:
        """Render a template to text.

        Raises:
            TemplateSyntaxError: If the template does not parse, for example
                on unbalanced ``{% if %}`` blocks.
            TemplateRenderError: If rendering fails inside the sandbox.
        """
        if not isinstance(template, str):
            return stringify(template)
        if "{{" not in template and "{%" not in template:
            return template
        compiled = self._templates.get(template)
        if compiled is None:
            compiled = self._templates[template] = self._compile_template(template)
        try:
            return compiled.render(context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Template rendering failed: {exc}") from exc

    def render_value(self, template: Any, context: Mapping[str, Any]) -> Any:
        """Render a template, keeping the raw value of a sole placeholder.

        ``"{{ steps.x.output }}"`` yields the referenced object itself;
        anything else renders to text.
        """
        if not isinstance(template, str):
            return template
        match = _SOLE_PLACEHOLDER.match(template)
        if match and "{{" not in match.group(1) and "}}" not in match.group(1) and "{%" not in template:
            return self.evaluate(match.group(1), context)
        return self.render(template, context)

    def render_data(self, data: Any, context: Mapping[str, Any]) -> Any:
        """Recursively render every string leaf, preserving structure."""
        if isinstance(data, str):
            return self.render_value(data, context)
        if isinstance(data, Mapping):
            return {key: self.render_data(value, context) for key, value in data.items()}
        if isinstance(data, (list, tuple)):
            return [self.render_data(item, context) for item in data]
        return data

    def _compile_template(self, template: str) -> Template:
        source = _CONDITION_TAG.sub(
            lambda m: f"{{%{m.group(1)} {m.group(2)} {self._condition_source(m.group(3))} {m.group(4)}%}}",
            template,
        )
        source = _PLACEHOLDER.sub(lambda m: f"{{{{ {self._expression_source(m.group(1))} }}}}", source)
        try:
            return self._env.from_string(source)
        except JinjaSyntaxError as exc:
            raise TemplateSyntaxError(f"Invalid template (line {exc.lineno}): {exc.message}") from exc

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def get_value(self, path: str, context: Mapping[str, Any]) -> Any:
        """Resolve a dot path against the context."""
        return lookup_path(context, path.strip())

    def evaluate(self, expression: str, context: Mapping[str, Any]) -> Any:
        """Evaluate the body of a ``{{ }}`` placeholder to a value."""
        return self._run(self._expression_source(expression), context)

    def evaluate_condition(self, expression: str, context: Mapping[str, Any]) -> bool:
        """Evaluate an expression as a boolean.

        Order: ternary; ``or``/``and``/``not``; ``X | length op N``;
        ``left op right``; literal ``true``/``false``; empty or ``null`` is
        false; otherwise the truthiness of the resolved value.

        Examples:
            >>> engine = TemplateEngine()
            >>> engine.evaluate_condition("item > 2", {"item": 3})
            True
            >>> engine.evaluate_condition("ctx.role == 'admin'", {"ctx": {"role": "user"}})
            False
        """
        return bool(self._run(self._condition_source(expression), context))

    def _run(self, source: str, context: Mapping[str, Any]) -> Any:
        compiled = self._expressions.get(source)
        if compiled is None:
            try:
                compiled = self._env.compile_expression(source, undefined_to_none=True)
            except JinjaSyntaxError as exc:
                raise TemplateSyntaxError(f"Invalid expression {source!r}: {exc.message}") from exc
            self._expressions[source] = compiled
        try:
            return compiled(context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Expression evaluation failed: {exc}") from exc

    def _expression_source(self, expression: str) -> str:
        """Compile a DSL value expression to jinja source."""
        expr = expression.strip()
        if not expr:
            return "none"
        masked = _mask_quotes(expr)
        ternary = _TERNARY.match(masked)
        if ternary:
            condition, when_true, when_false = _groups(expr, ternary)
            return (
                f"(({self._expression_source(when_true)}) if ({self._condition_source(condition)})"
                f" else ({self._expression_source(when_false)}))"
            )
        if _is_condition(expr):
            return f"({self._condition_source(expr)})"
        return self._translate(expr)

    def _condition_source(self, expression: str) -> str:
        """Compile a DSL condition to a jinja boolean expression."""
        expr = expression.strip()
        wrapped = _SOLE_PLACEHOLDER.match(expr)
        if wrapped:
            expr = wrapped.group(1).strip()
        if not expr:
            return "false"
        if _TERNARY.match(_mask_quotes(expr)):
            return f"_truthy({self._expression_source(expr)})"

        alternatives = _split(expr, _OR)
        if len(alternatives) > 1:
            return " or ".join(f"({self._condition_source(part)})" for part in alternatives)
        conjuncts = _split(expr, _AND)
        if len(conjuncts) > 1:
            return " and ".join(f"({self._condition_source(part)})" for part in conjuncts)

        masked = _mask_quotes(expr)
        if masked.startswith("not "):
            return f"not ({self._condition_source(expr[4:])})"
        if masked.startswith("!") and not masked.startswith("!="):
            return f"not ({self._condition_source(expr[1:])})"

        length_match = _LENGTH_CONDITION.match(masked)
        if length_match:
            subject, op, size = _groups(expr, length_match)
            return f"_compare(({self._expression_source(subject)}) | length, {json.dumps(op)}, {int(size)})"

        comparison = _COMPARISON.match(masked)
        if comparison:
            left, op, right = _groups(expr, comparison)
            return f"_compare({self._expression_source(left)}, {json.dumps(op)}, {self._expression_source(right)})"

        lowered = expr.lower()
        if lowered in ("true", "false"):
            return lowered
        if lowered in ("null", "none"):
            return "false"
        return f"_truthy({self._expression_source(expr)})"

    def _translate(self, expression: str) -> str:
        """Rewrite ``null`` and ``name:arg`` filters into jinja syntax.

        Unknown filters are dropped so the value passes through unchanged.
        """
        base, *filters = _split(expression, _PIPE)
        source = _sub_unquoted(_NULL, "none", base.strip())
        if filters:
            source = f"({source})"
        for spec in filters:
            match = _FILTER_SPEC.match(spec)
            if match is None:
                raise TemplateSyntaxError(f"Invalid filter {spec.strip()!r} in {expression!r}")
            name, rest = match.group(1), match.group(2).strip()
            if name not in self._env.filters:
                logger.debug("Unknown template filter '%s' ignored", name)
                continue
            if rest.startswith(":"):
                args = rest[1:]
                rest = f"({', '.join(_jinja_literal(arg) for arg in _split(args, _COMMA))})" if args.strip() else ""
            source = f"{source} | {name}{rest}"
        return source


__all__ = [
    "DEFAULT_FILTERS",
    "TemplateEngine",
    "compare_values",
    "is_truthy",
    "lookup_path",
    "stringify",
    "value_length",
]
