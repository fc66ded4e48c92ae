"""Tests for the fragments.dsl.context module."""

from __future__ import annotations

import pytest

from fragments.dsl.context import ExecutionContext, as_execution_context, new_ulid
from fragments.dsl.exceptions import StepConfigError


class TestExecutionContextCreate:
    """Tests for ExecutionContext.create."""

    def test_base_keys(self) -> None:
        """A new context exposes every per-run key."""
        context = ExecutionContext.create({"user_id": 1}, env={"APP_ENV": "test"}, prompts={"system": "Be brief"})
        for key in ("ctx", "env", "steps", "now", "uuid", "ulid", "prompts", "run_id"):
            assert key in context
        assert context["env"]["APP_ENV"] == "test"
        assert context["prompts"]["system"] == "Be brief"
        assert dict(context["steps"]) == {}

    def test_invocation_is_copied(self) -> None:
        """Mutating the caller's data does not leak into the context."""
        invocation = {"tags": ["a"]}
        context = ExecutionContext.create(invocation)
        invocation["tags"].append("b")
        assert context["ctx"]["tags"] == ["a"]

    def test_per_run_identifiers(self) -> None:
        """Every run gets its own ids."""
        first = ExecutionContext.create()
        second = ExecutionContext.create()
        assert first["run_id"] != second["run_id"]
        assert first["uuid"] != second["uuid"]
        assert len(first["ulid"]) == 26


class TestWithOutput:
    """Tests for ExecutionContext.with_output."""

    def test_returns_new_context(self) -> None:
        """The original context is never modified."""
        context = ExecutionContext.create()
        later = context.with_output("lookup", {"count": 2})
        assert later["steps"]["lookup"]["output"] == {"count": 2}
        assert "lookup" not in context["steps"]
        assert later.step_ids == ("lookup",)

    def test_order_is_preserved(self) -> None:
        """Step ids are listed in execution order."""
        context = ExecutionContext.create().with_output("b", 1).with_output("a", 2)
        assert context.step_ids == ("b", "a")

    def test_duplicate_id_rejected(self) -> None:
        """An id can only be recorded once."""
        context = ExecutionContext.create().with_output("lookup", 1)
        with pytest.raises(StepConfigError, match="Duplicate step id"):
            context.with_output("lookup", 2)

    def test_output_is_copied(self) -> None:
        """Later mutation of the recorded value has no effect."""
        output = {"items": [1]}
        context = ExecutionContext.create().with_output("x", output)
        output["items"].append(2)
        assert context["steps"]["x"]["output"] == {"items": [1]}

    def test_steps_view_is_read_only(self) -> None:
        """The steps mapping cannot be written through."""
        context = ExecutionContext.create().with_output("x", 1)
        with pytest.raises(TypeError):
            context["steps"]["y"] = {"output": 2}  # type: ignore[index]


class TestWithLocals:
    """Tests for ExecutionContext.with_locals."""

    def test_locals_shadow_and_stay_local(self) -> None:
        """Locals are visible in the derived context only."""
        context = ExecutionContext.create({"a": 1})
        scoped = context.with_locals(item={"id": 5}, index=0)
        assert scoped["item"] == {"id": 5}
        assert scoped["ctx"] == {"a": 1}
        assert "item" not in context

    def test_outputs_keep_locals(self) -> None:
        """Recording an output in a scoped context keeps its locals."""
        scoped = ExecutionContext.create().with_locals(branch_depth=2)
        later = scoped.with_output("x", 1)
        assert later["branch_depth"] == 2

    def test_to_dict(self) -> None:
        """to_dict returns a plain, mutable mapping."""
        data = ExecutionContext.create({"a": 1}).with_output("x", 1).with_locals(item=3).to_dict()
        assert data["steps"] == {"x": {"output": 1}}
        assert data["item"] == 3
        data["ctx"]["a"] = 2


class TestAsExecutionContext:
    """Tests for as_execution_context."""

    def test_wraps_plain_mapping(self) -> None:
        """Plain mappings become contexts with their step outputs."""
        wrapped = as_execution_context({"ctx": {"a": 1}, "steps": {"s": {"output": 3}}})
        assert wrapped["ctx"]["a"] == 1
        assert wrapped.step_ids == ("s",)

    def test_returns_context_unchanged(self) -> None:
        """An existing context is returned as is."""
        context = ExecutionContext.create()
        assert as_execution_context(context) is context


def test_ulid_alphabet() -> None:
    """ULIDs use the Crockford alphabet."""
    value = new_ulid()
    assert set(value) <= set("0123456789ABCDEFGHJKMNPQRSTVWXYZ")
