"""Fragment-centric shortcuts over the model store.

``content`` is accepted as an alias of the ``message`` column. Updates merge
``state`` and ``metadata`` into the stored values instead of replacing them.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fragments.dsl.exceptions import StepConfigError, StepExecutionError
from fragments.dsl.steps.model import DEFAULT_QUERY_LIMIT
from fragments.dsl.steps.records import MODEL_POLICIES, RecordStep, parse_conditions, parse_order
from fragments.dsl.steps.utility import deep_merge
from fragments.dsl.validators import MAX_QUERY_LIMIT, validate_field_name, validate_limit
from fragments.store.base import ModelStore, Predicate

logger = logging.getLogger(__name__)

#: Fields merged into the stored value on update.
MERGED_FIELDS = ("state", "metadata")

_POLICY = MODEL_POLICIES["fragment"]


def fragment_data(params: Mapping[str, Any]) -> dict[str, Any]:
    """Collect fragment fields from step parameters.

    Examples:
        >>> fragment_data({"content": "Buy milk", "type": "todo", "noise": 1})
        {'type': 'todo', 'message': 'Buy milk'}
    """
    data = {key: params[key] for key in _POLICY.fillable if key in params and key != "message"}
    message = params.get("message", params.get("content"))
    if message is not None:
        data["message"] = message
    return data


def _query_tagged(store: ModelStore, tags: set[str], limit: int, query: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Page through matching fragments until ``limit`` of them carry every tag."""
    found: list[dict[str, Any]] = []
    offset = 0
    while len(found) < limit:
        page = store.query("fragment", limit=MAX_QUERY_LIMIT, offset=offset, **query)
        found.extend(record for record in page if tags <= set(record.get("tags") or []))
        if len(page) < MAX_QUERY_LIMIT:
            break
        offset += MAX_QUERY_LIMIT
    return found[:limit]


class FragmentCreateStep(RecordStep):
    """Create a fragment from ``type``, ``title``, ``content``, ``state``, ``tags`` and ``metadata``."""

    type_name = "fragment.create"

    def validate(self, config: Mapping[str, Any]) -> bool:
        params = self.params(config)
        return bool(params.get("content") or params.get("message"))

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        data = fragment_data(self.params(config))

        if dry_run:
            errors = _POLICY.validate(data, creating=True)
            logger.info("[DRY RUN] fragment.create (%s)", data.get("type", "note"))
            return {
                "dry_run": True,
                "would_create": "fragment",
                "data": data,
                "validation": {"valid": not errors, "errors": errors},
            }

        _POLICY.check(self.type_name, data, creating=True)
        values = _POLICY.apply_defaults(data)
        record = self.services.require_store(self.type_name).create("fragment", values)
        return {
            "success": True,
            "id": record["id"],
            "type": record.get("type"),
            "fragment": _POLICY.format(record),
        }


class FragmentQueryStep(RecordStep):
    """Query fragments by ``type``, ``inbox_status``, ``tags``, ``state`` and ``search``.

    ``tags`` keeps fragments carrying every listed tag. ``state`` is a mapping
    of equality filters on the JSON ``state`` column.
    """

    type_name = "fragment.query"

    def validate(self, config: Mapping[str, Any]) -> bool:
        return True

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        predicates = parse_conditions(params.get("conditions"))
        for name in ("type", "inbox_status", "vault", "project_id", "pinned"):
            if params.get(name) is not None:
                predicates.append(Predicate(name, "=", params[name]))
        state = params.get("state") or {}
        if not isinstance(state, Mapping):
            raise StepConfigError("fragment.query 'state' must be a mapping")
        for key, value in state.items():
            predicates.append(Predicate(validate_field_name(f"state.{key}"), "=", value))

        tags = params.get("tags") or []
        if isinstance(tags, str):
            tags = [tag.strip() for tag in tags.split(",") if tag.strip()]
        limit = validate_limit(params.get("limit"), DEFAULT_QUERY_LIMIT)

        if dry_run:
            logger.info("[DRY RUN] fragment.query")
            return {
                "dry_run": True,
                "would_query": "fragment",
                "conditions": self.describe(predicates),
                "tags": list(tags),
                "limit": limit,
            }

        store = self.services.require_store(self.type_name)
        query = {
            "predicates": predicates,
            "search": params.get("search") or None,
            "order": parse_order(params.get("order")),
        }
        if not tags:
            records = store.query("fragment", limit=limit, **query)
        else:
            records = _query_tagged(store, set(tags), limit, query)
        results = [_POLICY.format(record) for record in records]
        return {"results": results, "count": len(results)}


class FragmentUpdateStep(RecordStep):
    """Update one fragment by ``id``, merging ``state`` and ``metadata``."""

    type_name = "fragment.update"

    def validate(self, config: Mapping[str, Any]) -> bool:
        return self.params(config).get("id") not in (None, "")

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        record_id = params.get("id")
        if record_id in (None, ""):
            raise StepConfigError("fragment.update step requires 'id'")
        changes = fragment_data(params)
        if not changes:
            raise StepConfigError("fragment.update step requires at least one field to update")

        if dry_run:
            errors = _POLICY.validate(changes, creating=False)
            logger.info("[DRY RUN] fragment.update #%s", record_id)
            return {
                "dry_run": True,
                "would_update": "fragment",
                "id": record_id,
                "data": changes,
                "validation": {"valid": not errors, "errors": errors},
            }

        _POLICY.check(self.type_name, changes, creating=False)
        store = self.services.require_store(self.type_name)
        current = store.find("fragment", record_id)
        if current is None:
            raise StepExecutionError(self.type_name, f"Fragment not found: {record_id}")
        for name in MERGED_FIELDS:
            if isinstance(changes.get(name), Mapping) and isinstance(current.get(name), Mapping):
                changes[name] = deep_merge(current[name], changes[name], "right_wins")
        record = store.update("fragment", record_id, changes)
        return {
            "success": True,
            "id": record["id"],
            "updated_fields": sorted(changes),
            "fragment": _POLICY.format(record),
        }


__all__ = [
    "FragmentCreateStep",
    "FragmentQueryStep",
    "FragmentUpdateStep",
    "fragment_data",
]
