"""SQLAlchemy Core implementation of the model store and invocation log."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import JSON, Table, create_engine, delete, insert, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.elements import ColumnElement

from fragments.store.base import Ordering, Predicate, ToolInvocation
from fragments.store.exceptions import (
    RecordNotFoundError,
    StoreError,
    UnknownColumnError,
    UnknownModelError,
)
from fragments.store.schema import MODEL_TABLES, RELATIONS, SEARCH_COLUMNS, metadata, tool_invocations

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_engine_from_url(url: str, **kwargs: Any) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads.

    Examples:
        >>> engine = create_engine_from_url("sqlite://")
        >>> engine.dialect.name
        'sqlite'
    """
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs.setdefault("poolclass", StaticPool)
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, **kwargs)


def _serialize(row: Mapping[str, Any]) -> dict[str, Any]:
    record: dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, (datetime, date)):
            record[key] = value.isoformat()
        else:
            record[key] = value
    return record


def _json_element(column: ColumnElement[Any], path: Sequence[str], value: Any) -> ColumnElement[Any]:
    element = column[tuple(path)] if len(path) > 1 else column[path[0]]
    sample = value[0] if isinstance(value, (list, tuple)) and value else value
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, int):
        return element.as_integer()
    if isinstance(sample, float):
        return element.as_float()
    return element.as_string()


class SqlModelStore:
    """Model store backed by SQLAlchemy Core tables.

    Soft-deleted rows (``deleted_at`` set) are invisible to every read.

    Args:
        engine: SQLAlchemy engine.
        create_tables: Create missing tables on construction.

    Examples:
        >>> store = SqlModelStore.from_url("sqlite://", create_tables=True)
        >>> record = store.create("bookmark", {"name": "Reading", "fragment_ids": []})
        >>> store.find("bookmark", record["id"])["name"]
        'Reading'
    """

    def __init__(self, engine: Engine, *, create_tables: bool = False) -> None:
        self.engine = engine
        if create_tables:
            self.create_all()

    @classmethod
    def from_url(cls, url: str, *, create_tables: bool = False, **engine_kwargs: Any) -> SqlModelStore:
        """Build a store for a database URL."""
        return cls(create_engine_from_url(url, **engine_kwargs), create_tables=create_tables)

    def create_all(self) -> None:
        """Create every table that does not exist yet."""
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(
        self,
        model: str,
        *,
        predicates: Sequence[Predicate] = (),
        search: str | None = None,
        order: Sequence[Ordering] = (),
        limit: int | None = None,
        offset: int = 0,
        relations: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        table = self._table(model)
        unknown = set(relations) - RELATIONS[model]
        if unknown:
            raise UnknownColumnError(f"Unknown relation(s) for {model}: {', '.join(sorted(unknown))}")

        stmt = select(table).where(table.c.deleted_at.is_(None))
        for predicate in predicates:
            stmt = stmt.where(self._clause(table, predicate))
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(*(table.c[name].like(pattern) for name in SEARCH_COLUMNS[model])))

        if order:
            for term in order:
                column = self._order_target(table, term.field)
                stmt = stmt.order_by(column.desc() if term.direction == "desc" else column.asc())
        else:
            stmt = stmt.order_by(table.c.created_at.desc(), table.c.id.desc())

        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        with self.engine.connect() as conn:
            records = [_serialize(row._mapping) for row in conn.execute(stmt)]

        for relation in relations:
            self._load_relation(model, relation, records)
        logger.debug("Query %s returned %d record(s)", model, len(records))
        return records

    def find(self, model: str, record_id: Any) -> dict[str, Any] | None:
        table = self._table(model)
        stmt = select(table).where(table.c.id == record_id, table.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
        return _serialize(row._mapping) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, model: str, data: Mapping[str, Any]) -> dict[str, Any]:
        table = self._table(model)
        values = self._checked_values(table, data)
        now = _utcnow()
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)
        with self.engine.begin() as conn:
            result = conn.execute(insert(table).values(**values))
            record_id = result.inserted_primary_key[0]
        record = self.find(model, record_id)
        if record is None:
            raise StoreError(f"{model} record {record_id!r} vanished after insert")
        logger.info("Created %s #%s", model, record_id)
        return record

    def update(self, model: str, record_id: Any, data: Mapping[str, Any]) -> dict[str, Any]:
        table = self._table(model)
        values = self._checked_values(table, data)
        values["updated_at"] = _utcnow()
        stmt = update(table).where(table.c.id == record_id, table.c.deleted_at.is_(None)).values(**values)
        with self.engine.begin() as conn:
            if conn.execute(stmt).rowcount == 0:
                raise RecordNotFoundError(model, record_id)
        record = self.find(model, record_id)
        if record is None:
            raise RecordNotFoundError(model, record_id)
        return record

    def delete(self, model: str, record_id: Any, *, soft: bool = True) -> None:
        table = self._table(model)
        live = (table.c.id == record_id, table.c.deleted_at.is_(None))
        if soft:
            stmt = update(table).where(*live).values(deleted_at=_utcnow())
        else:
            stmt = delete(table).where(*live)
        with self.engine.begin() as conn:
            if conn.execute(stmt).rowcount == 0:
                raise RecordNotFoundError(model, record_id)
        logger.info("%s %s #%s", "Soft-deleted" if soft else "Deleted", model, record_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _table(model: str) -> Table:
        try:
            return MODEL_TABLES[model]
        except KeyError:
            raise UnknownModelError(f"Unknown model: {model!r}") from None

    @staticmethod
    def _column(table: Table, name: str) -> ColumnElement[Any]:
        if name not in table.c:
            raise UnknownColumnError(f"Unknown column '{name}' on {table.name}")
        return table.c[name]

    def _checked_values(self, table: Table, data: Mapping[str, Any]) -> dict[str, Any]:
        values = dict(data)
        for name in values:
            if name == "id":
                raise UnknownColumnError("The primary key cannot be written")
            self._column(table, name)
        return values

    def _json_target(self, table: Table, dotted: str, value: Any) -> ColumnElement[Any]:
        column_name, *path = dotted.split(".")
        column = self._column(table, column_name)
        if not isinstance(column.type, JSON):
            raise UnknownColumnError(f"Column '{column_name}' on {table.name} is not a JSON column")
        return _json_element(column, path, value)

    def _order_target(self, table: Table, field: str) -> ColumnElement[Any]:
        if "." in field:
            return self._json_target(table, field, "")
        return self._column(table, field)

    def _clause(self, table: Table, predicate: Predicate) -> ColumnElement[bool]:
        op = predicate.operator
        value = predicate.value
        if "." in predicate.field:
            target = self._json_target(table, predicate.field, value)
        else:
            target = self._column(table, predicate.field)

        if op == "=":
            return target == value
        if op in ("!=", "<>"):
            return target != value
        if op == "<":
            return target < value
        if op == ">":
            return target > value
        if op == "<=":
            return target <= value
        if op == ">=":
            return target >= value
        if op == "LIKE":
            return target.like(value)
        if op == "NOT LIKE":
            return target.not_like(value)
        if op == "IN":
            return target.in_(list(value))
        if op == "NOT IN":
            return target.not_in(list(value))
        if op == "IS NULL":
            return target.is_(None)
        if op == "IS NOT NULL":
            return target.is_not(None)
        raise StoreError(f"Unsupported operator: {op!r}")

    def _load_relation(self, model: str, relation: str, records: list[dict[str, Any]]) -> None:
        if model == "bookmark" and relation == "fragments":
            wanted = {fid for record in records for fid in (record.get("fragment_ids") or [])}
            found = {f["id"]: f for f in self.query("fragment", predicates=[Predicate("id", "IN", sorted(wanted))])}
            for record in records:
                record["fragments"] = [found[fid] for fid in (record.get("fragment_ids") or []) if fid in found]
        elif model == "fragment" and relation == "bookmarks":
            all_bookmarks = self.query("bookmark")
            for record in records:
                record["bookmarks"] = [b for b in all_bookmarks if record["id"] in (b.get("fragment_ids") or [])]


class SqlInvocationLog:
    """Write tool-call audit records to ``tool_invocations``."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def record(self, invocation: ToolInvocation) -> None:
        values = {
            "id": invocation.id,
            "user_id": invocation.user_id,
            "tool_slug": invocation.tool_slug,
            "command_slug": invocation.command_slug,
            "fragment_id": invocation.fragment_id,
            "request": dict(invocation.request),
            "response": invocation.response,
            "status": invocation.status,
            "duration_ms": invocation.duration_ms,
            "created_at": _utcnow(),
        }
        with self.engine.begin() as conn:
            conn.execute(insert(tool_invocations).values(**values))

    def recent(self, limit: int = 50) -> list[dict[str, Any]]:
        """Return the latest audit records, newest first."""
        stmt = select(tool_invocations).order_by(tool_invocations.c.created_at.desc()).limit(limit)
        with self.engine.connect() as conn:
            return [_serialize(row._mapping) for row in conn.execute(stmt)]


__all__ = [
    "SqlInvocationLog",
    "SqlModelStore",
    "create_engine_from_url",
]
