"""``database.update`` step: update a single record by id."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fragments.dsl.exceptions import StepConfigError, StepExecutionError
from fragments.dsl.steps.records import RecordStep, parse_data
from fragments.store.exceptions import RecordNotFoundError

logger = logging.getLogger(__name__)


class DatabaseUpdateStep(RecordStep):
    """Write the fillable fields of ``with.data`` to record ``with.id`` of ``with.model``."""

    type_name = "database.update"

    def validate(self, config: Mapping[str, Any]) -> bool:
        params = self.params(config)
        return super().validate(config) and params.get("id") not in (None, "") and params.get("data") is not None

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        policy = self.policy_for(params)
        record_id = params.get("id")
        if record_id in (None, ""):
            raise StepConfigError("database.update step requires 'id'")
        if params.get("data") is None:
            raise StepConfigError("database.update step requires 'data'")
        values = policy.filter_fillable(parse_data(params["data"], self.type_name))

        if dry_run:
            logger.info("[DRY RUN] database.update %s #%s", policy.name, record_id)
            return {"dry_run": True, "would_update": policy.name, "id": record_id, "data": values}

        policy.check(self.type_name, values, creating=False)
        if not values:
            return {"success": True, "model": policy.name, "id": record_id, "affected_rows": 0}
        try:
            self.services.require_store(self.type_name).update(policy.name, record_id, values)
        except RecordNotFoundError as exc:
            raise StepExecutionError(self.type_name, str(exc)) from exc
        return {"success": True, "model": policy.name, "id": record_id, "affected_rows": 1}


__all__ = [
    "DatabaseUpdateStep",
]
