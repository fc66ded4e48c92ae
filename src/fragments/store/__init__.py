"""Persistence for the allow-listed models and the tool-call audit log.

Examples:
    >>> from fragments.store import Predicate, SqlModelStore
    >>> store = SqlModelStore.from_url("sqlite://", create_tables=True)
    >>> store.query("fragment", predicates=[Predicate("state.status", "=", "open")])
    []
"""

from fragments.store.base import InvocationLog, ModelStore, Ordering, Predicate, ToolInvocation
from fragments.store.exceptions import (
    RecordNotFoundError,
    StoreError,
    UnknownColumnError,
    UnknownModelError,
)
from fragments.store.sql import SqlInvocationLog, SqlModelStore, create_engine_from_url

__all__ = [
    "InvocationLog",
    "ModelStore",
    "Ordering",
    "Predicate",
    "RecordNotFoundError",
    "SqlInvocationLog",
    "SqlModelStore",
    "StoreError",
    "ToolInvocation",
    "UnknownColumnError",
    "UnknownModelError",
    "create_engine_from_url",
]
