"""Exceptions raised by the fragments.ai module."""

from __future__ import annotations

from fragments.exceptions import FragmentsError


class AIProviderError(FragmentsError):
    """The AI provider call failed.

    Attributes:
        status_code: HTTP status code, when the provider answered.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialize AIProviderError.

        Args:
            message: Description of the failure.
            status_code: HTTP status code, when available.
        """
        super().__init__(message)
        self.status_code = status_code


__all__ = [
    "AIProviderError",
]
