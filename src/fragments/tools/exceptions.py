"""Exceptions raised by the fragments.tools module.

Exception hierarchy::

    FragmentsError
        ToolError
            ToolNotAllowedError (also PermissionError)
            ToolNotFoundError (also LookupError)
            ToolArgumentError (also ValueError)
"""

from __future__ import annotations

from fragments.exceptions import FragmentsError


class ToolError(FragmentsError):
    """Base exception for tool registry errors."""


class ToolNotAllowedError(ToolError, PermissionError):
    """The tool is registered but not allowed by policy."""

    def __init__(self, slug: str) -> None:
        """Initialize ToolNotAllowedError.

        Args:
            slug: Tool slug.
        """
        super().__init__(f"Tool not allowed: {slug}")
        self.slug = slug


class ToolNotFoundError(ToolError, LookupError):
    """No tool is registered under the slug."""

    def __init__(self, slug: str) -> None:
        """Initialize ToolNotFoundError.

        Args:
            slug: Tool slug.
        """
        super().__init__(f"Tool not registered: {slug}")
        self.slug = slug


class ToolArgumentError(ToolError, ValueError):
    """Arguments do not satisfy the tool schema.

    Attributes:
        errors: Individual schema violations.
    """

    def __init__(self, slug: str, errors: list[str]) -> None:
        """Initialize ToolArgumentError.

        Args:
            slug: Tool slug.
            errors: Individual schema violations.
        """
        super().__init__(f"Invalid arguments for tool '{slug}': " + "; ".join(errors))
        self.slug = slug
        self.errors = list(errors)


__all__ = [
    "ToolArgumentError",
    "ToolError",
    "ToolNotAllowedError",
    "ToolNotFoundError",
]
