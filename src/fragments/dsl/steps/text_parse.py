"""``text.parse`` step: structure free-form text with a named parser."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

from fragments.dsl.base import Step
from fragments.dsl.exceptions import StepConfigError
from fragments.dsl.steps.utility import elapsed_ms
from fragments.parsing.todo import MAX_TITLE_LENGTH, TITLE_PREFIXES

logger = logging.getLogger(__name__)

#: Parsers understood by the step.
PARSERS = ("todo",)


def fallback_title(text: str) -> str:
    """Derive a title from raw text without the parser.

    Examples:
        >>> fallback_title("Task: water the plants")
        'water the plants'
        >>> fallback_title("   ")
        'Untitled Todo'
    """
    title = text.strip()
    for prefix in TITLE_PREFIXES:
        if title.lower().startswith(prefix):
            title = title[len(prefix) :].strip()
            break
    if len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 3] + "..."
    return title or "Untitled Todo"


def fallback_result(text: str, parser: str) -> dict[str, Any]:
    if parser == "todo":
        return {
            "title": fallback_title(text),
            "description": text,
            "due_date": None,
            "priority": "medium",
            "tags": ["todo"],
            "status": "open",
            "parsed_by_fallback": True,
        }
    return {"raw_text": text, "parsed_by_fallback": True}


class TextParseStep(Step):
    """Parse ``with.input`` with ``with.parser`` (default ``todo``).

    ``rules`` adjusts the todo parse: ``extract_due_date``,
    ``extract_priority`` and ``extract_tags`` set to false discard the
    extracted value; ``default_priority`` overrides the priority and
    ``force_tags`` adds tags. A parser failure returns ``success: false``
    with a minimal ``fallback`` todo.
    """

    type_name = "text.parse"

    def validate(self, config: Mapping[str, Any]) -> bool:
        params = self.params(config)
        return bool(params.get("input")) and params.get("parser", "todo") in PARSERS

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        text = params.get("input")
        if text is None or text == "":
            raise StepConfigError("text.parse step requires 'input'")
        text = str(text)
        parser = str(params.get("parser") or "todo")
        rules = params.get("rules") or {}

        if dry_run:
            logger.info("[DRY RUN] text.parse (%s, %d chars)", parser, len(text))
            return {
                "dry_run": True,
                "parser": parser,
                "input_length": len(text),
                "rules": rules,
                "would_parse": True,
            }

        started = time.perf_counter()
        try:
            if parser != "todo":
                raise StepConfigError(f"Unsupported parser type: {parser}")
            output = self.parse_todo(text, rules)
        except (ValueError, TypeError) as exc:
            logger.warning("text.parse failed, using fallback: %s", exc)
            return {
                "success": False,
                "parser": parser,
                "input": text,
                "error": str(exc),
                "parsing_time_ms": elapsed_ms(started),
                "fallback": fallback_result(text, parser),
            }
        return {
            "success": True,
            "parser": parser,
            "input": text,
            "output": output,
            "parsing_time_ms": elapsed_ms(started),
            "rules_applied": rules,
        }

    def parse_todo(self, text: str, rules: Mapping[str, Any]) -> dict[str, Any]:
        result = self.services.todo_parser.parse(text)
        if "extract_due_date" in rules and not rules["extract_due_date"]:
            result["due_date"] = None
        if "extract_priority" in rules and not rules["extract_priority"]:
            result["priority"] = "medium"
        if "extract_tags" in rules and not rules["extract_tags"]:
            result["tags"] = ["todo"]
        if rules.get("default_priority"):
            result["priority"] = rules["default_priority"]
        forced = rules.get("force_tags") or []
        if forced:
            result["tags"] = list(dict.fromkeys([*result["tags"], *forced]))
        return result


__all__ = [
    "PARSERS",
    "TextParseStep",
    "fallback_result",
    "fallback_title",
]
