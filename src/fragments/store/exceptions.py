"""Exceptions raised by the fragments.store module.

Exception hierarchy::

    FragmentsError
        StoreError
            UnknownModelError (also ValueError)
            UnknownColumnError (also ValueError)
            RecordNotFoundError (also LookupError)
"""

from __future__ import annotations

from fragments.exceptions import FragmentsError


class StoreError(FragmentsError):
    """Base exception for persistence errors."""


class UnknownModelError(StoreError, ValueError):
    """The model name has no backing table."""


class UnknownColumnError(StoreError, ValueError):
    """A predicate, ordering or payload names a column the table lacks."""


class RecordNotFoundError(StoreError, LookupError):
    """No live record matches the requested id.

    Attributes:
        model: Model name.
        record_id: Requested primary key.
    """

    def __init__(self, model: str, record_id: object) -> None:
        """Initialize RecordNotFoundError.

        Args:
            model: Model name.
            record_id: Requested primary key.
        """
        super().__init__(f"{model} record {record_id!r} not found")
        self.model = model
        self.record_id = record_id


__all__ = [
    "RecordNotFoundError",
    "StoreError",
    "UnknownColumnError",
    "UnknownModelError",
]
