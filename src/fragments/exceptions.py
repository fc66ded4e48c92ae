"""Root exception for the fragments package."""

from __future__ import annotations


class FragmentsError(Exception):
    """Base exception for every error raised by fragments.

    Catch this class to handle any library failure without depending on
    individual subsystem exceptions.
    """


__all__ = [
    "FragmentsError",
]
