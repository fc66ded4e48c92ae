"""Parse free-form todo text into structured fields.

Examples:
    >>> parser = TodoTextParser()
    >>> todo = parser.parse("todo: Call Bob about the invoice #work @phone !!")
    >>> todo["title"], todo["priority"], todo["tags"]
    ('Call Bob about the invoice', 'high', ['work', 'ctx-phone', 'todo'])
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

#: Maximum title length before truncation.
MAX_TITLE_LENGTH = 80

#: Keyword -> priority, first match wins.
PRIORITY_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("urgent", "urgent"),
    ("critical", "urgent"),
    ("asap", "urgent"),
    ("high priority", "high"),
    ("high", "high"),
    ("important", "high"),
    ("low priority", "low"),
    ("low", "low"),
    ("minor", "low"),
)

#: Relative day phrases -> offset in days.
RELATIVE_DAYS: tuple[tuple[str, int], ...] = (
    ("today", 0),
    ("tomorrow", 1),
    ("tmr", 1),
    ("next week", 7),
    ("next month", 30),
)

WEEKDAYS: tuple[tuple[str, int], ...] = (
    ("monday", 0),
    ("tuesday", 1),
    ("wednesday", 2),
    ("thursday", 3),
    ("friday", 4),
    ("saturday", 5),
    ("sunday", 6),
    ("mon", 0),
    ("tue", 1),
    ("wed", 2),
    ("thu", 3),
    ("fri", 4),
    ("sat", 5),
    ("sun", 6),
)

TITLE_PREFIXES = ("todo:", "task:", "do:", "reminder:")

_HASHTAG = re.compile(r"#([a-zA-Z0-9_-]+)")
_CONTEXT_TAG = re.compile(r"@([a-zA-Z0-9_-]+)")
_ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_IN_DURATION = re.compile(r"\bin (\d+) (hour|day|week)s?\b")
_P_LEVEL = re.compile(r"\bp([123])\b", re.IGNORECASE)
_SENTENCE_END = re.compile(r"[.!?]")


def _word(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE)


class TodoTextParser:
    """Extract title, tags, priority and due date from todo text.

    Args:
        now: Clock returning an aware datetime, injectable for tests.
    """

    def __init__(self, now: Callable[[], datetime] | None = None) -> None:
        self._now = now or (lambda: datetime.now(timezone.utc))

    def parse(self, text: str) -> dict[str, Any]:
        """Parse ``text``.

        Returns:
            ``title``, ``description``, ``due_date`` (ISO or None), ``priority``,
            ``tags`` and ``status``.

        Raises:
            ValueError: If the text is empty.
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("Todo text cannot be empty")

        tags = self.extract_tags(text)
        priority = self.extract_priority(text)
        due_date = self.extract_due_date(text)
        title = self.extract_title(self.remove_metadata(text))
        return {
            "title": title,
            "description": text,
            "due_date": due_date.isoformat() if due_date else None,
            "priority": priority,
            "tags": tags,
            "status": "open",
        }

    def extract_due_date(self, text: str) -> datetime | None:
        lowered = text.lower()
        now = self._now()

        iso = _ISO_DATE.search(lowered)
        if iso:
            try:
                return datetime.strptime(iso.group(1), "%Y-%m-%d").replace(tzinfo=timezone.utc)
            except ValueError:
                pass

        for phrase, days in RELATIVE_DAYS:
            if _word(phrase).search(lowered):
                return now + timedelta(days=days)

        for name, weekday in WEEKDAYS:
            if _word(name).search(lowered):
                ahead = (weekday - now.weekday()) % 7 or 7
                start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
                return start_of_day + timedelta(days=ahead)

        duration = _IN_DURATION.search(lowered)
        if duration:
            amount = int(duration.group(1))
            unit = duration.group(2)
            if unit == "hour":
                return now + timedelta(hours=amount)
            if unit == "day":
                return now + timedelta(days=amount)
            return now + timedelta(weeks=amount)
        return None

    def extract_priority(self, text: str) -> str:
        lowered = text.lower()
        for phrase, priority in PRIORITY_KEYWORDS:
            if _word(phrase).search(lowered):
                return priority
        if "!!!" in lowered:
            return "urgent"
        if "!!" in lowered:
            return "high"
        if "!" in lowered:
            return "medium"
        level = _P_LEVEL.search(lowered)
        if level:
            return {"1": "urgent", "2": "high"}.get(level.group(1), "medium")
        return "medium"

    def extract_tags(self, text: str) -> list[str]:
        tags = _HASHTAG.findall(text)
        tags += [f"ctx-{tag}" for tag in _CONTEXT_TAG.findall(text)]
        if "todo" not in tags:
            tags.append("todo")
        return list(dict.fromkeys(tags))

    def extract_title(self, text: str) -> str:
        text = text.strip()
        for prefix in TITLE_PREFIXES:
            if text.lower().startswith(prefix):
                text = text[len(prefix) :].strip()
                break
        title = _SENTENCE_END.split(text, maxsplit=1)[0].strip()
        if len(title) > MAX_TITLE_LENGTH:
            title = title[:MAX_TITLE_LENGTH] + "..."
        return title or "Untitled Todo"

    def remove_metadata(self, text: str) -> str:
        """Strip tags, priority markers and date phrases from ``text``."""
        text = _HASHTAG.sub("", text)
        text = _CONTEXT_TAG.sub("", text)
        for phrase, _ in PRIORITY_KEYWORDS:
            text = _word(phrase).sub("", text)
        text = re.sub(r"!+", "", text)
        text = _P_LEVEL.sub("", text)
        text = _ISO_DATE.sub("", text)
        for phrase, _ in RELATIVE_DAYS:
            text = _word(phrase).sub("", text)
        for name, _ in WEEKDAYS:
            text = _word(name).sub("", text)
        text = re.sub(r"\bin \d+ (hour|day|week)s?\b", "", text, flags=re.IGNORECASE)
        return re.sub(r"\s+", " ", text).strip()


__all__ = [
    "MAX_TITLE_LENGTH",
    "TodoTextParser",
]
