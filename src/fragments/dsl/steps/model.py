"""Generic CRUD steps over the allow-listed models.

- ``model.query``: filtered, ordered, paginated reads
- ``model.create``: validated insert of fillable fields with defaults
- ``model.update``: validated update of every matching record
- ``model.delete``: soft (default) or hard delete of every matching record
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fragments.dsl.exceptions import StepConfigError, StepExecutionError
from fragments.dsl.steps.records import (
    RecordStep,
    parse_conditions,
    parse_data,
    parse_order,
    parse_relations,
)
from fragments.dsl.validators import validate_limit, validate_offset
from fragments.store.exceptions import StoreError

logger = logging.getLogger(__name__)

#: Rows returned by ``model.query`` when no limit is given.
DEFAULT_QUERY_LIMIT = 25


class ModelQueryStep(RecordStep):
    """Query records of one model.

    Parameters (``with``): ``model``, ``conditions``, ``search``, ``order``,
    ``limit`` (default 25, max 500), ``offset``, ``relations``.

    Examples:
        >>> from fragments.dsl.factory import StepFactory
        >>> step = StepFactory().create("model.query")
        >>> step.execute({"with": {"model": "fragment", "limit": 5}}, {}, dry_run=True)["would_query"]
        'fragment'
    """

    type_name = "model.query"

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        policy = self.policy_for(params)
        predicates = parse_conditions(params.get("conditions"))
        order = parse_order(params.get("order"))
        relations = parse_relations(params.get("relations"))
        limit = validate_limit(params.get("limit"), DEFAULT_QUERY_LIMIT)
        offset = validate_offset(params.get("offset"))
        search = params.get("search") or None

        if dry_run:
            logger.info("[DRY RUN] model.query %s", policy.name)
            return {
                "dry_run": True,
                "would_query": policy.name,
                "conditions": self.describe(predicates),
                "relations": relations,
                "order": params.get("order"),
                "limit": limit,
            }

        store = self.services.require_store(self.type_name)
        records = store.query(
            policy.name,
            predicates=predicates,
            search=str(search) if search is not None else None,
            order=order,
            limit=limit,
            offset=offset,
            relations=relations,
        )
        results = [policy.format(record) for record in records]
        return {
            "results": results,
            "count": len(results),
            "model": policy.name,
            "filters_applied": {
                "conditions": self.describe(predicates),
                "search": search,
                "limit": limit,
                "offset": offset,
                "order": params.get("order"),
            },
        }


class ModelCreateStep(RecordStep):
    """Create one record from ``with.data``.

    Only fillable fields are written; model defaults fill the gaps.
    """

    type_name = "model.create"

    def validate(self, config: Mapping[str, Any]) -> bool:
        params = self.params(config)
        return super().validate(config) and isinstance(params.get("data"), Mapping)

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        policy = self.policy_for(params)
        if params.get("data") is None:
            raise StepConfigError(f"{self.type_name} step requires 'data'")
        data = parse_data(params["data"], self.type_name)

        if dry_run:
            errors = policy.validate(data, creating=True)
            logger.info("[DRY RUN] model.create %s", policy.name)
            return {
                "dry_run": True,
                "would_create": policy.name,
                "data": data,
                "validation": {"valid": not errors, "errors": errors},
            }

        policy.check(self.type_name, data, creating=True)
        values = policy.apply_defaults(policy.filter_fillable(data))
        store = self.services.require_store(self.type_name)
        record = store.create(policy.name, values)
        return {
            "success": True,
            "model": policy.name,
            "id": record["id"],
            "data": values,
            "record": policy.format(record),
        }


class ModelUpdateStep(RecordStep):
    """Update every record matched by ``with.id`` or ``with.conditions``.

    Raises:
        StepExecutionError: If nothing matches.
    """

    type_name = "model.update"

    def validate(self, config: Mapping[str, Any]) -> bool:
        params = self.params(config)
        return (
            super().validate(config)
            and isinstance(params.get("data"), Mapping)
            and (params.get("id") is not None or bool(params.get("conditions")))
        )

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        policy = self.policy_for(params)
        if params.get("data") is None:
            raise StepConfigError(f"{self.type_name} step requires 'data'")
        data = parse_data(params["data"], self.type_name)
        predicates = self.target_predicates(params)

        if dry_run:
            errors = policy.validate(data, creating=False)
            logger.info("[DRY RUN] model.update %s", policy.name)
            return {
                "dry_run": True,
                "would_update": policy.name,
                "id": params.get("id"),
                "conditions": self.describe(predicates),
                "data": data,
                "validation": {"valid": not errors, "errors": errors},
            }

        policy.check(self.type_name, data, creating=False)
        values = policy.filter_fillable(data)
        store = self.services.require_store(self.type_name)
        records = store.query(policy.name, predicates=predicates)
        if not records:
            raise StepExecutionError(self.type_name, f"No records found to update for model: {policy.name}")

        original: dict[Any, dict[str, Any]] = {}
        updated: list[dict[str, Any]] = []
        for record in records:
            original[record["id"]] = {key: record.get(key) for key in values}
            updated.append(policy.format(store.update(policy.name, record["id"], values)))
        logger.info("Updated %d %s record(s)", len(updated), policy.name)
        return {
            "success": True,
            "model": policy.name,
            "updated_count": len(updated),
            "records": updated,
            "original_data": original,
            "updated_data": values,
        }


class ModelDeleteStep(RecordStep):
    """Delete every record matched by ``with.id`` or ``with.conditions``.

    Deletion is soft unless ``soft_delete: false``. A record that fails to
    delete is logged and reported in ``failed_ids``; the others proceed.
    """

    type_name = "model.delete"

    def validate(self, config: Mapping[str, Any]) -> bool:
        params = self.params(config)
        return super().validate(config) and (params.get("id") is not None or bool(params.get("conditions")))

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        policy = self.policy_for(params)
        predicates = self.target_predicates(params)
        soft = params.get("soft_delete", True) not in (False, "false", "0", 0)

        if dry_run:
            logger.info("[DRY RUN] model.delete %s (soft=%s)", policy.name, soft)
            return {
                "dry_run": True,
                "would_delete": policy.name,
                "id": params.get("id"),
                "conditions": self.describe(predicates),
                "soft_delete": soft,
            }

        store = self.services.require_store(self.type_name)
        records = store.query(policy.name, predicates=predicates)
        if not records:
            raise StepExecutionError(self.type_name, f"No records found to delete for model: {policy.name}")

        deleted: list[dict[str, Any]] = []
        failed_ids: list[Any] = []
        for record in records:
            try:
                store.delete(policy.name, record["id"], soft=soft)
            except StoreError as exc:
                logger.error("Failed to delete %s record %s: %s", policy.name, record["id"], exc)
                failed_ids.append(record["id"])
            else:
                deleted.append(record)
        return {
            "success": True,
            "model": policy.name,
            "deleted_count": len(deleted),
            "failed_count": len(failed_ids),
            "failed_ids": failed_ids,
            "soft_delete": soft,
            "deleted_records": [policy.format(record) for record in deleted],
        }


__all__ = [
    "DEFAULT_QUERY_LIMIT",
    "ModelCreateStep",
    "ModelDeleteStep",
    "ModelQueryStep",
    "ModelUpdateStep",
]
