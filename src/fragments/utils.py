"""Small text and value helpers shared across fragments."""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone
from typing import Any

_NUMERIC_PATTERN = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")
_TAG_PATTERN = re.compile(r"<[^>]*>")


def is_numeric(value: Any) -> bool:
    """Return True for numbers and numeric-looking strings (never for bools).

    Examples:
        >>> is_numeric("3.5"), is_numeric(4), is_numeric("4a"), is_numeric(True)
        (True, True, False, False)
    """
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and bool(_NUMERIC_PATTERN.match(value.strip()))


def to_number(value: Any) -> int | float:
    """Convert a numeric value or string to ``int`` when integral, else ``float``.

    Raises:
        ValueError: If the value is not numeric.

    Examples:
        >>> to_number("42"), to_number("2.5"), to_number(7)
        (42, 2.5, 7)
    """
    if isinstance(value, bool) or not is_numeric(value):
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, (int, float)):
        return value
    text = value.strip()
    if _INTEGER_PATTERN.match(text):
        return int(text)
    return float(text)


def slugify(text: Any, separator: str = "-") -> str:
    """Return an ASCII, lower-case slug.

    Examples:
        >>> slugify("Hello, Wörld! 2024")
        'hello-world-2024'
    """
    normalized = unicodedata.normalize("NFKD", str(text)).encode("ascii", "ignore").decode("ascii")
    normalized = re.sub(r"[^\w\s-]", "", normalized.lower())
    return re.sub(r"[-\s_]+", separator, normalized).strip(separator)


def strip_tags(text: Any) -> str:
    """Remove HTML tags.

    Examples:
        >>> strip_tags("<p>Hello <b>there</b></p>")
        'Hello there'
    """
    return _TAG_PATTERN.sub("", str(text))


def truncate(text: Any, length: int = 100, suffix: str = "...") -> str:
    """Cut ``text`` to ``length`` characters, appending ``suffix`` when cut.

    Examples:
        >>> truncate("abcdef", 3)
        'abc...'
        >>> truncate("abc", 3)
        'abc'
    """
    value = str(text)
    if len(value) <= length:
        return value
    return value[:length] + suffix


def parse_datetime(value: Any) -> datetime:
    """Parse a datetime, ISO-8601 string or UNIX timestamp.

    Naive results are assumed to be UTC.

    Raises:
        ValueError: If the value cannot be interpreted as a date.

    Examples:
        >>> parse_datetime("2024-05-01T10:00:00Z").year
        2024
        >>> parse_datetime(0).year
        1970
    """
    if isinstance(value, datetime):
        parsed = value
    elif is_numeric(value):
        parsed = datetime.fromtimestamp(float(value), tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Cannot parse date from {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "is_numeric",
    "parse_datetime",
    "slugify",
    "strip_tags",
    "to_number",
    "truncate",
]
