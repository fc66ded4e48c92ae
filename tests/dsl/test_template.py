"""Tests for the fragments.dsl.template module."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from fragments.dsl.exceptions import TemplateRenderError, TemplateSyntaxError
from fragments.dsl.template import (
    TemplateEngine,
    compare_values,
    is_truthy,
    lookup_path,
    stringify,
    value_length,
)

# pylint: disable=redefined-outer-name


@pytest.fixture
def engine() -> TemplateEngine:
    return TemplateEngine()


@pytest.fixture
def data() -> dict[str, Any]:
    return {
        "ctx": {"name": "ada", "title": "  Hello World  ", "n": 3, "role": "user", "active": True, "tags": ["a", "b"]},
        "steps": {"lookup": {"output": {"count": 2, "results": [{"id": 1}, {"id": 2}]}}},
    }


# ============================================================================
# Value helpers
# ============================================================================


class TestStringify:
    """Tests for stringify."""

    def test_scalars(self) -> None:
        """None is empty, booleans are lower-case words."""
        assert stringify(None) == ""
        assert stringify(False) == "false"
        assert stringify(12) == "12"

    def test_collections_render_as_json(self) -> None:
        """Lists and mappings render as JSON text."""
        assert stringify({"a": [1, 2]}) == '{"a": [1, 2]}'


class TestIsTruthy:
    """Tests for is_truthy."""

    @pytest.mark.parametrize("value", [None, False, 0, "", "0", "false", "FALSE", "null", " ", [], {}])
    def test_falsy(self, value: Any) -> None:
        """Empty values and falsy words are false."""
        assert is_truthy(value) is False

    @pytest.mark.parametrize("value", [True, 1, -1, "no", "yes", "x", [0], {"a": 1}])
    def test_truthy(self, value: Any) -> None:
        """Everything else is true, including the word 'no'."""
        assert is_truthy(value) is True


class TestCompareValues:
    """Tests for compare_values."""

    def test_numeric_strings_compare_as_numbers(self) -> None:
        """'10' > '9' numerically, not lexically."""
        assert compare_values("10", ">", "9") is True
        assert compare_values("2.0", "==", 2) is True

    def test_text_comparison(self) -> None:
        """Non-numeric operands compare as text."""
        assert compare_values("apple", "<", "banana") is True
        assert compare_values("a", "!=", "b") is True

    def test_none_equals_empty(self) -> None:
        """None and the empty string are equal."""
        assert compare_values(None, "==", "") is True
        assert compare_values(None, "==", "x") is False

    def test_bool_equality_uses_truthiness(self) -> None:
        """Booleans compare by truthiness."""
        assert compare_values(True, "==", "true") is True
        assert compare_values(False, "==", "0") is True

    def test_unknown_operator(self) -> None:
        """An unknown operator is a syntax error."""
        with pytest.raises(TemplateSyntaxError, match="Unknown comparison operator"):
            compare_values(1, "<>", 2)


class TestLookupPath:
    """Tests for lookup_path."""

    def test_nested_mapping_and_index(self) -> None:
        """Dot paths traverse mappings and list indices."""
        assert lookup_path({"a": {"b": [10, 20, 30]}}, "a.b.2") == 30
        assert lookup_path({"a": [1, 2]}, "a.-1") == 2

    def test_missing_segments(self) -> None:
        """Missing keys, bad indices and scalars yield None."""
        assert lookup_path({"a": 1}, "b") is None
        assert lookup_path({"a": [1]}, "a.5") is None
        assert lookup_path({"a": "text"}, "a.0") is None
        assert lookup_path({"a": 1}, "a..b") is None


class TestValueLength:
    """Tests for value_length."""

    def test_lengths(self) -> None:
        """Collections and strings report their size, None is zero."""
        assert value_length([1, 2, 3]) == 3
        assert value_length("abcd") == 4
        assert value_length(None) == 0
        assert value_length(12345) == 5


# ============================================================================
# Rendering
# ============================================================================


class TestRender:
    """Tests for TemplateEngine.render and render_value."""

    def test_plain_text_unchanged(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Text without placeholders is returned as is."""
        assert engine.render("no placeholders", data) == "no placeholders"

    def test_placeholder_with_filters(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Filters chain left to right."""
        assert engine.render("{{ ctx.title | trim | upper }}!", data) == "HELLO WORLD!"

    def test_missing_path_renders_empty(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """An unresolved path renders as empty text."""
        assert engine.render("[{{ ctx.nope }}]", data) == "[]"

    def test_step_output_reference(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Step outputs are addressed through steps.<id>.output."""
        assert engine.render("{{ steps.lookup.output.count }} found", data) == "2 found"

    def test_non_string_template(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Non-string templates are stringified."""
        assert engine.render(42, data) == "42"

    def test_render_value_keeps_raw_object(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """A sole placeholder yields the referenced object itself."""
        value = engine.render_value("{{ steps.lookup.output.results }}", data)
        assert value == [{"id": 1}, {"id": 2}]

    def test_render_value_mixed_text(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Mixed text always renders to a string."""
        assert engine.render_value("n={{ ctx.n }}", data) == "n=3"

    def test_render_data_preserves_structure(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Every string leaf is rendered; other values pass through."""
        rendered = engine.render_data({"who": "{{ ctx.name }}", "list": ["{{ ctx.n }}", 5], "flag": True}, data)
        assert rendered == {"who": "ada", "list": [3, 5], "flag": True}


class TestBlocks:
    """Tests for {% if %} blocks."""

    def test_if_else(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """The first true branch is rendered."""
        template = "{% if ctx.n > 5 %}big{% elif ctx.n > 2 %}medium{% else %}small{% endif %}"
        assert engine.render(template, data) == "medium"

    def test_nested_blocks(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Nested blocks are matched to their own endif."""
        template = "{% if ctx.active %}A{% if ctx.n == 3 %}B{% endif %}C{% else %}D{% endif %}"
        assert engine.render(template, data) == "ABC"

    def test_no_branch_matches(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Without an else, a false block renders nothing."""
        assert engine.render("x{% if ctx.nope %}y{% endif %}z", data) == "xz"

    def test_unclosed_block(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """A missing endif is a syntax error."""
        with pytest.raises(TemplateSyntaxError, match="Unexpected end of template"):
            engine.render("{% if ctx.n %}open", data)

    def test_stray_endif(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """A stray endif is a syntax error."""
        with pytest.raises(TemplateSyntaxError, match="unknown tag 'endif'"):
            engine.render("text{% endif %}", data)

    def test_for_loop_with_filter_arguments(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """jinja loops work, and loop variables are visible to DSL conditions."""
        template = "{% for tag in ctx.tags %}{% if tag != 'a' %}{{ tag | upper }}{% endif %}{% endfor %}"
        assert engine.render(template, data) == "B"
        assert engine.render("{{ ctx.tags | join:'-' }} {{ ctx.tags | join('+') }}", data) == "a-b a+b"

    def test_conditions_are_loose(self, engine: TemplateEngine) -> None:
        """Numeric strings compare as numbers and 'false' is false."""
        values = {"count": "10", "flag": "false"}
        assert engine.render("{% if count > 9 %}many{% endif %}", values) == "many"
        assert engine.render("{% if flag %}on{% else %}off{% endif %}", values) == "off"

    def test_trailing_newline_kept(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Rendering does not eat the final newline."""
        assert engine.render("{{ ctx.name }}\n", data) == "ada\n"


class TestSandbox:
    """Tests for the sandboxed environment."""

    def test_mapping_keys_win_over_methods(self, engine: TemplateEngine) -> None:
        """A key named like a dict method resolves to the key; otherwise the method is used."""
        assert engine.render_value("{{ data.items }}", {"data": {"items": [1, 2]}}) == [1, 2]
        template = "{% for key, value in data.items() %}{{ key }}={{ value }};{% endfor %}"
        assert engine.render(template, {"data": {"a": 1, "b": 2}}) == "a=1;b=2;"

    def test_private_attributes_are_hidden(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Dunder attributes render as nothing."""
        assert engine.render("[{{ ctx.name.__class__ }}]", data) == "[]"

    def test_unsafe_call_is_refused(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Calling through an unsafe attribute fails the render."""
        with pytest.raises(TemplateRenderError):
            engine.render("{{ ctx.name.__class__.__subclasses__() }}", data)

    def test_unknown_filter_logged(
        self, engine: TemplateEngine, data: dict[str, Any], caplog: pytest.LogCaptureFixture
    ) -> None:
        """Dropped filters are reported at debug level."""
        with caplog.at_level(logging.DEBUG, logger="fragments.dsl.template"):
            assert engine.render("{{ ctx.name | shout:3 }}", data) == "ada"
        assert "Unknown template filter 'shout' ignored" in caplog.text

    def test_register_filter_after_use(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """A filter registered later applies to templates rendered before."""
        assert engine.render("{{ ctx.name | shout }}", data) == "ada"
        engine.register_filter("shout", lambda value: f"{value}!")
        assert engine.render("{{ ctx.name | shout }}", data) == "ada!"

    def test_invalid_expression(self, engine: TemplateEngine) -> None:
        """Unparseable expressions are syntax errors."""
        with pytest.raises(TemplateSyntaxError, match="Invalid expression"):
            engine.evaluate("a +* b", {})


# ============================================================================
# Expressions
# ============================================================================


class TestEvaluate:
    """Tests for TemplateEngine.evaluate."""

    def test_literals(self, engine: TemplateEngine) -> None:
        """Quoted, numeric and keyword literals."""
        assert engine.evaluate("'text'", {}) == "text"
        assert engine.evaluate("42", {}) == 42
        assert engine.evaluate("null", {}) is None
        assert engine.evaluate("true", {}) is True

    def test_arithmetic_precedence(self, engine: TemplateEngine) -> None:
        """Multiplication binds tighter than addition."""
        assert engine.evaluate("2 + 3 * 4", {}) == 14
        assert engine.evaluate("10 / 4", {}) == 2.5
        assert engine.evaluate("8 / 0", {}) == 0

    def test_string_concatenation(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """'+' concatenates when an operand is not numeric."""
        assert engine.evaluate("ctx.name + '!'", data) == "ada!"

    def test_ternary(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """cond ? a : b picks a branch."""
        assert engine.evaluate("ctx.n > 2 ? 'big' : 'small'", data) == "big"

    def test_comparison_returns_bool(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Comparisons evaluate to booleans."""
        assert engine.evaluate("ctx.n >= 3", data) is True

    def test_filters(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """Built-in filters with arguments."""
        assert engine.evaluate("ctx.nope | default:'none'", data) == "none"
        assert engine.evaluate("ctx.tags | join:' + '", data) == "a + b"
        assert engine.evaluate("ctx.tags | length", data) == 2
        assert engine.evaluate("ctx.tags | first", data) == "a"
        assert engine.evaluate("ctx.name | capitalize", data) == "Ada"
        assert engine.evaluate("'hello world' | truncate:5", data) == "hello..."
        assert engine.evaluate("'Hello World' | slug", data) == "hello-world"

    def test_jsonpath_filter(self, engine: TemplateEngine) -> None:
        """jsonpath decodes JSON text and follows the path."""
        assert engine.evaluate("raw | jsonpath:'$.a.b'", {"raw": '{"a": {"b": 3}}'}) == 3

    def test_date_filter(self, engine: TemplateEngine) -> None:
        """date formats ISO strings."""
        assert engine.evaluate("when | date:'%Y/%m/%d'", {"when": "2024-05-01T10:00:00Z"}) == "2024/05/01"

    def test_unknown_filter_is_ignored(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """An unknown filter leaves the value unchanged."""
        assert engine.evaluate("ctx.name | shout", data) == "ada"

    def test_custom_filter(self, data: dict[str, Any]) -> None:
        """Extra filters can be registered."""
        engine = TemplateEngine({"shout": lambda value: f"{value}!"})
        assert engine.evaluate("ctx.name | shout", data) == "ada!"
        assert "shout" in engine.filter_names


class TestEvaluateCondition:
    """Tests for TemplateEngine.evaluate_condition."""

    def test_boolean_operators(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """and/or/not combine sub-conditions."""
        assert engine.evaluate_condition("ctx.role == 'admin' or ctx.active", data) is True
        assert engine.evaluate_condition("ctx.role == 'admin' and ctx.active", data) is False
        assert engine.evaluate_condition("not ctx.nope", data) is True
        assert engine.evaluate_condition("!ctx.active", data) is False

    def test_length_condition(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """'x | length op n' compares the size."""
        assert engine.evaluate_condition("steps.lookup.output.results | length == 2", data) is True
        assert engine.evaluate_condition("ctx.tags | length > 5", data) is False

    def test_wrapped_placeholder(self, engine: TemplateEngine, data: dict[str, Any]) -> None:
        """A condition wrapped in {{ }} is unwrapped first."""
        assert engine.evaluate_condition("{{ ctx.n == 3 }}", data) is True

    def test_literal_words(self, engine: TemplateEngine) -> None:
        """true/false/null/empty literals."""
        assert engine.evaluate_condition("true", {}) is True
        assert engine.evaluate_condition("false", {}) is False
        assert engine.evaluate_condition("null", {}) is False
        assert engine.evaluate_condition("", {}) is False

    def test_quoted_operators_do_not_split(self, engine: TemplateEngine) -> None:
        """Operators inside quoted literals are ignored."""
        assert engine.evaluate_condition("title == 'this or that'", {"title": "this or that"}) is True
