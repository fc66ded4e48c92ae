"""Text parsers used by the ``text.parse`` step."""

from fragments.parsing.todo import TodoTextParser

__all__ = [
    "TodoTextParser",
]
