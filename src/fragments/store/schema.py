"""SQLAlchemy table definitions for the allow-listed models."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()


def _timestamps() -> list[Column]:
    return [
        Column("created_at", DateTime(timezone=True), nullable=False),
        Column("updated_at", DateTime(timezone=True), nullable=False),
        Column("deleted_at", DateTime(timezone=True), nullable=True),
    ]


fragments = Table(
    "fragments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("message", Text, nullable=False),
    Column("title", String(255)),
    Column("type", String(32), nullable=False, default="note"),
    Column("tags", JSON),
    Column("metadata", JSON),
    Column("state", JSON),
    Column("vault", String(64)),
    Column("project_id", Integer),
    Column("importance", Integer),
    Column("confidence", Integer),
    Column("pinned", Boolean, default=False),
    Column("inbox_status", String(16)),
    *_timestamps(),
)

chat_sessions = Table(
    "chat_sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vault_id", Integer),
    Column("project_id", Integer),
    Column("title", String(255)),
    Column("custom_name", String(255)),
    Column("short_code", String(32)),
    Column("summary", Text),
    Column("messages", JSON),
    Column("metadata", JSON),
    Column("is_active", Boolean, default=True),
    Column("is_pinned", Boolean, default=False),
    Column("sort_order", Integer, default=0),
    Column("model_provider", String(64)),
    Column("model_name", String(128)),
    Column("last_activity_at", DateTime(timezone=True)),
    *_timestamps(),
)

bookmarks = Table(
    "bookmarks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("fragment_ids", JSON),
    Column("vault_id", Integer),
    Column("project_id", Integer),
    Column("last_viewed_at", DateTime(timezone=True)),
    *_timestamps(),
)

vault_routing_rules = Table(
    "vault_routing_rules",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("match_type", String(32), nullable=False),
    Column("match_value", String(255)),
    Column("conditions", JSON),
    Column("target_vault_id", Integer, nullable=False),
    Column("target_project_id", Integer),
    Column("scope_vault_id", Integer),
    Column("scope_project_id", Integer),
    Column("priority", Integer, default=0),
    Column("is_active", Boolean, default=True),
    Column("notes", Text),
    *_timestamps(),
)

tool_invocations = Table(
    "tool_invocations",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", Integer),
    Column("tool_slug", String(128), nullable=False),
    Column("command_slug", String(128)),
    Column("fragment_id", Integer),
    Column("request", JSON),
    Column("response", JSON),
    Column("status", String(16), nullable=False),
    Column("duration_ms", Float),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

#: Model name -> table.
MODEL_TABLES: dict[str, Table] = {
    "fragment": fragments,
    "chat_session": chat_sessions,
    "bookmark": bookmarks,
    "vault_routing_rule": vault_routing_rules,
}

#: Columns matched by free-text ``search`` per model.
SEARCH_COLUMNS: dict[str, tuple[str, ...]] = {
    "fragment": ("message", "title"),
    "chat_session": ("title", "custom_name", "short_code"),
    "bookmark": ("name",),
    "vault_routing_rule": ("name", "match_value", "notes"),
}

#: Relations that ``query(relations=...)`` can eager-load per model.
RELATIONS: dict[str, frozenset[str]] = {
    "fragment": frozenset({"bookmarks"}),
    "bookmark": frozenset({"fragments"}),
    "chat_session": frozenset(),
    "vault_routing_rule": frozenset(),
}

__all__ = [
    "MODEL_TABLES",
    "RELATIONS",
    "SEARCH_COLUMNS",
    "bookmarks",
    "chat_sessions",
    "fragments",
    "metadata",
    "tool_invocations",
    "vault_routing_rules",
]
