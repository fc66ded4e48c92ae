"""Tests for the store-backed steps: model.*, fragment.* and database.update."""

from __future__ import annotations

from typing import Any

import pytest

from fragments.dsl import ExecutionContext, StepFactory, StepServices
from fragments.dsl.exceptions import StepConfigError, StepExecutionError, StepValidationError
from fragments.dsl.steps.records import MODEL_POLICIES, parse_conditions, parse_order, parse_relations
from fragments.dsl.validators import MAX_QUERY_LIMIT
from fragments.store.base import Ordering, Predicate
from fragments.store.exceptions import RecordNotFoundError
from fragments.store.sql import SqlModelStore

# pylint: disable=redefined-outer-name


def _run(factory: StepFactory, step_type: str, params: dict[str, Any], *, dry_run: bool = False) -> Any:
    return factory.create(step_type).execute({"with": params}, ExecutionContext.create(), dry_run=dry_run)


@pytest.fixture
def seeded(store: SqlModelStore) -> SqlModelStore:
    """Store with three fragments."""
    store.create("fragment", {"message": "Buy milk", "type": "todo", "tags": ["home"], "state": {"status": "open"}})
    store.create("fragment", {"message": "Call Bob", "type": "todo", "tags": ["work", "phone"], "state": {"status": "done"}})
    store.create("fragment", {"message": "<b>Idea</b> for a talk", "type": "note", "tags": ["work"], "state": {}})
    return store


# ============================================================================
# Query parsing
# ============================================================================


class TestParsing:
    """Tests for the condition, order and relation parsers."""

    def test_conditions_from_json(self) -> None:
        """JSON strings decode to predicates."""
        raw = '[{"field": "type", "operator": "!=", "value": "log"}]'
        assert parse_conditions(raw) == [Predicate("type", "!=", "log")]

    def test_conditions_mapping_is_equality(self) -> None:
        """A plain mapping means field equality."""
        assert parse_conditions({"type": "todo", "pinned": True}) == [
            Predicate("type", "=", "todo"),
            Predicate("pinned", "=", True),
        ]

    def test_in_requires_list(self) -> None:
        """IN and NOT IN need array values."""
        with pytest.raises(StepConfigError, match="must be an array"):
            parse_conditions([{"field": "id", "operator": "in", "value": 3}])

    def test_null_operator_drops_value(self) -> None:
        """IS NULL ignores any given value."""
        assert parse_conditions([{"field": "title", "operator": "is null", "value": "x"}]) == [
            Predicate("title", "IS NULL", None)
        ]

    @pytest.mark.parametrize(
        "condition",
        [
            {"field": "id; DROP TABLE fragments", "value": 1},
            {"field": "id", "operator": "BETWEEN", "value": 1},
            {"field": "state.status\n", "value": "open"},
        ],
    )
    def test_rejects_unsafe_input(self, condition: dict[str, Any]) -> None:
        """Field names and operators are allow-listed."""
        with pytest.raises(StepConfigError):
            parse_conditions([condition])

    def test_invalid_json(self) -> None:
        """Broken JSON is a configuration error."""
        with pytest.raises(StepConfigError, match="Invalid JSON"):
            parse_conditions("[{")

    def test_order(self) -> None:
        """Order terms default to descending."""
        assert parse_order("created_at") == [Ordering("created_at", "desc")]
        assert parse_order('{"field": "title", "direction": "ASC"}') == [Ordering("title", "asc")]
        with pytest.raises(StepConfigError):
            parse_order("title sideways")

    def test_relations(self) -> None:
        """Relations accept comma lists."""
        assert parse_relations("bookmarks, fragments") == ["bookmarks", "fragments"]


# ============================================================================
# model.*
# ============================================================================


class TestModelQuery:
    """Tests for model.query."""

    def test_conditions_and_format(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """Results are filtered and formatted with a snippet."""
        result = _run(
            factory,
            "model.query",
            {"model": "fragment", "conditions": [{"field": "state.status", "operator": "=", "value": "open"}]},
        )
        assert result["count"] == 1
        assert result["model"] == "fragment"
        assert result["results"][0]["message"] == "Buy milk"
        assert result["results"][0]["snippet"] == "Buy milk"

    def test_snippet_strips_tags(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """Snippets are tag-free previews."""
        result = _run(factory, "model.query", {"model": "fragment", "search": "Idea"})
        assert result["results"][0]["snippet"] == "Idea for a talk"

    def test_limit_and_order(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """limit and order are honored and echoed."""
        result = _run(factory, "model.query", {"model": "fragment", "order": "id asc", "limit": 2})
        assert [row["id"] for row in result["results"]] == [1, 2]
        assert result["filters_applied"]["limit"] == 2

    def test_unknown_model(self, factory: StepFactory) -> None:
        """Models outside the allow-list are rejected."""
        step = factory.create("model.query")
        assert not step.validate({"with": {"model": "users"}})
        with pytest.raises(StepConfigError, match="Unknown model"):
            _run(factory, "model.query", {"model": "users"})

    def test_limit_bounds(self, factory: StepFactory) -> None:
        """Limits above the maximum are rejected."""
        with pytest.raises(StepConfigError, match="between 1 and"):
            _run(factory, "model.query", {"model": "fragment", "limit": 1000})

    def test_requires_store(self) -> None:
        """Without a store the step fails with a configuration error."""
        factory = StepFactory(StepServices())
        with pytest.raises(StepConfigError, match="requires a configured model store"):
            _run(factory, "model.query", {"model": "fragment"})


class TestModelCreate:
    """Tests for model.create."""

    def test_fillable_and_defaults(self, factory: StepFactory, store: SqlModelStore) -> None:
        """Only fillable fields are written; defaults fill the rest."""
        result = _run(
            factory,
            "model.create",
            {"model": "fragment", "data": {"message": "Hello", "created_at": "1999-01-01", "owner": "eve"}},
        )
        assert result["success"] is True
        assert result["data"] == {"message": "Hello", "type": "note", "inbox_status": "pending", "tags": [], "state": {}}
        record = store.find("fragment", result["id"])
        assert record is not None
        assert not record["created_at"].startswith("1999")

    def test_required_field(self, factory: StepFactory) -> None:
        """Missing required fields fail validation."""
        with pytest.raises(StepValidationError, match="Required field 'message'"):
            _run(factory, "model.create", {"model": "fragment", "data": {"title": "x"}})

    def test_semantic_validation(self, factory: StepFactory) -> None:
        """Every semantic error is reported at once."""
        with pytest.raises(StepValidationError) as exc_info:
            _run(factory, "model.create", {"model": "fragment", "data": {"message": "x", "type": "poem", "importance": 9}})
        assert exc_info.value.errors == ["Invalid fragment type: poem", "Importance must be between 1 and 5"]

    def test_defaults_are_not_shared(self, factory: StepFactory) -> None:
        """Each record gets its own copy of list defaults."""
        first = _run(factory, "model.create", {"model": "bookmark", "data": {"name": "a"}})
        first["data"]["fragment_ids"].append(1)
        second = _run(factory, "model.create", {"model": "bookmark", "data": {"name": "b"}})
        assert second["data"]["fragment_ids"] == []
        assert MODEL_POLICIES["bookmark"].defaults["fragment_ids"] == []

    def test_dry_run(self, factory: StepFactory, store: SqlModelStore) -> None:
        """Dry runs validate without writing and are repeatable."""
        params = {"model": "fragment", "data": {"title": "no message"}}
        first = _run(factory, "model.create", params, dry_run=True)
        second = _run(factory, "model.create", params, dry_run=True)
        assert first == second
        assert first["validation"]["valid"] is False
        assert store.query("fragment") == []

    def test_data_as_json(self, factory: StepFactory) -> None:
        """data may be a JSON string."""
        result = _run(factory, "model.create", {"model": "bookmark", "data": '{"name": "Reading"}'})
        assert result["record"]["fragment_count"] == 0


class TestModelUpdate:
    """Tests for model.update."""

    def test_update_by_conditions(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """Every matching record is updated and originals are reported."""
        result = _run(
            factory,
            "model.update",
            {"model": "fragment", "conditions": {"type": "todo"}, "data": {"pinned": True, "id": 99}},
        )
        assert result["updated_count"] == 2
        assert result["updated_data"] == {"pinned": True}
        assert set(result["original_data"]) == {1, 2}
        assert all(record["pinned"] is True for record in result["records"])

    def test_no_match(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """Updating nothing is an execution error."""
        with pytest.raises(StepExecutionError, match="No records found to update"):
            _run(factory, "model.update", {"model": "fragment", "id": 404, "data": {"pinned": True}})

    def test_target_required(self, factory: StepFactory) -> None:
        """An id or conditions are required."""
        assert not factory.create("model.update").validate({"with": {"model": "fragment", "data": {}}})
        with pytest.raises(StepConfigError, match="Either id or conditions"):
            _run(factory, "model.update", {"model": "fragment", "data": {"pinned": True}})


class TestModelDelete:
    """Tests for model.delete."""

    def test_soft_delete(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """Soft deletes hide records and report counts."""
        result = _run(factory, "model.delete", {"model": "fragment", "conditions": {"type": "todo"}})
        assert result["deleted_count"] == 2
        assert result["failed_count"] == 0
        assert result["failed_ids"] == []
        assert result["soft_delete"] is True
        assert len(result["deleted_records"]) == 2
        assert [row["id"] for row in seeded.query("fragment")] == [3]

    def test_hard_delete(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """soft_delete: false removes the row."""
        result = _run(factory, "model.delete", {"model": "fragment", "id": 3, "soft_delete": False})
        assert result["soft_delete"] is False
        assert seeded.find("fragment", 3) is None

    def test_nothing_to_delete(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """Deleting nothing is an execution error."""
        with pytest.raises(StepExecutionError, match="No records found to delete"):
            _run(factory, "model.delete", {"model": "fragment", "id": 404})

    def test_dry_run(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """Dry runs leave records in place."""
        result = _run(factory, "model.delete", {"model": "fragment", "id": 1}, dry_run=True)
        assert result["would_delete"] == "fragment"
        assert seeded.find("fragment", 1) is not None

    def test_failed_delete_is_not_reported_as_deleted(
        self, factory: StepFactory, seeded: SqlModelStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Records whose delete raised are listed in failed_ids only."""
        real_delete = seeded.delete

        def flaky_delete(model: str, record_id: Any, *, soft: bool = True) -> None:
            if record_id == 2:
                raise RecordNotFoundError(f"{model} #{record_id} vanished")
            real_delete(model, record_id, soft=soft)

        monkeypatch.setattr(seeded, "delete", flaky_delete)
        result = _run(factory, "model.delete", {"model": "fragment", "conditions": {"type": "todo"}})
        assert result["deleted_count"] == 1
        assert result["failed_ids"] == [2]
        assert [row["id"] for row in result["deleted_records"]] == [1]


# ============================================================================
# fragment.*
# ============================================================================


class TestFragmentSteps:
    """Tests for fragment.create, fragment.query and fragment.update."""

    def test_create_with_content_alias(self, factory: StepFactory) -> None:
        """content is stored as message."""
        result = _run(factory, "fragment.create", {"content": "Buy milk", "type": "todo", "tags": ["home"]})
        assert result["success"] is True
        assert result["type"] == "todo"
        assert result["fragment"]["message"] == "Buy milk"
        assert result["fragment"]["inbox_status"] == "pending"

    def test_create_requires_content(self, factory: StepFactory) -> None:
        """A message or content is required."""
        assert not factory.create("fragment.create").validate({"with": {"title": "x"}})

    def test_query_by_tags(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """Only fragments carrying every tag match."""
        result = _run(factory, "fragment.query", {"tags": "work, phone"})
        assert [row["message"] for row in result["results"]] == ["Call Bob"]

    def test_query_by_tags_past_first_page(self, factory: StepFactory, store: SqlModelStore) -> None:
        """A tagged fragment older than a full page of untagged ones is still found."""
        store.create("fragment", {"message": "Old tagged", "tags": ["x"]})
        for index in range(MAX_QUERY_LIMIT):
            store.create("fragment", {"message": f"Untagged {index}", "tags": []})
        result = _run(factory, "fragment.query", {"tags": ["x"]})
        assert result["count"] == 1
        assert result["results"][0]["message"] == "Old tagged"

    def test_query_by_type_and_state(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """type and state filters combine."""
        result = _run(factory, "fragment.query", {"type": "todo", "state": {"status": "done"}})
        assert result["count"] == 1
        assert result["results"][0]["message"] == "Call Bob"

    def test_update_merges_state(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """state is merged into the stored value."""
        seeded.update("fragment", 1, {"state": {"status": "open", "due": "friday"}})
        result = _run(factory, "fragment.update", {"id": 1, "state": {"status": "done"}, "title": "Milk"})
        assert result["updated_fields"] == ["state", "title"]
        assert result["fragment"]["state"] == {"status": "done", "due": "friday"}

    def test_update_missing(self, factory: StepFactory) -> None:
        """Unknown ids fail."""
        with pytest.raises(StepExecutionError, match="Fragment not found: 7"):
            _run(factory, "fragment.update", {"id": 7, "title": "x"})

    def test_update_requires_changes(self, factory: StepFactory) -> None:
        """At least one field must change."""
        with pytest.raises(StepConfigError, match="at least one field"):
            _run(factory, "fragment.update", {"id": 1})


# ============================================================================
# database.update
# ============================================================================


class TestDatabaseUpdate:
    """Tests for database.update."""

    def test_updates_one_row(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """Fillable fields are written to the record."""
        result = _run(factory, "database.update", {"model": "fragment", "id": 2, "data": {"importance": 4}})
        assert result["affected_rows"] == 1
        assert seeded.find("fragment", 2)["importance"] == 4  # type: ignore[index]

    def test_nothing_fillable(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """Payloads with no fillable field touch nothing."""
        result = _run(factory, "database.update", {"model": "fragment", "id": 2, "data": {"deleted_at": None}})
        assert result["affected_rows"] == 0

    def test_missing_record(self, factory: StepFactory, seeded: SqlModelStore) -> None:
        """A missing record is an execution error."""
        with pytest.raises(StepExecutionError, match="not found"):
            _run(factory, "database.update", {"model": "fragment", "id": 99, "data": {"title": "x"}})
