"""User-facing response steps.

- ``response.panel``: open a UI panel with fragments and a summary message
- ``notify``: publish a notification on the event bus
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fragments.dsl.base import Step
from fragments.dsl.exceptions import StepConfigError
from fragments.events import NotificationSent

logger = logging.getLogger(__name__)

#: Notification levels accepted by ``notify``.
NOTIFY_LEVELS = ("info", "success", "warning", "error")

#: Inbox action -> noun used in the summary message.
INBOX_ACTIONS: dict[str, str] = {
    "pending": "pending item",
    "bookmarked": "bookmarked item",
    "todos": "todo",
    "all": "actionable item",
}


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def recall_panel(message: str, panel_data: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    """Summarize a recall result.

    Examples:
        >>> recall_panel("", {"fragments": [{}, {}], "type": "note", "tags": ["work"]})[0]
        '📝 Found **2** notes tagged #work'
    """
    fragments = list(panel_data.get("fragments") or [])
    fragment_type = panel_data.get("type") or "fragment"
    if not message:
        message = f"📝 Found **{len(fragments)}** {fragment_type}{_plural(len(fragments))}"
        filters = []
        status = panel_data.get("status")
        if status and status != "open":
            filters.append(f"status:{status}")
        if panel_data.get("search"):
            filters.append(f"matching '{panel_data['search']}'")
        tags = panel_data.get("tags") or []
        if tags:
            filters.append("tagged #" + ", #".join(str(tag) for tag in tags))
        if filters:
            message += " " + " and ".join(filters)
    data = {**panel_data, "type": fragment_type, "fragments": fragments, "message": message}
    return message, data


def inbox_panel(message: str, panel_data: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    """Summarize an inbox listing.

    Examples:
        >>> inbox_panel("", {"action": "todos"})[0]
        '📥 No todos found.'
    """
    action = panel_data.get("action") or "pending"
    fragments = list(panel_data.get("fragments") or [])
    if not message:
        noun = INBOX_ACTIONS.get(action, "item")
        if fragments:
            message = f"📥 Found **{len(fragments)}** {noun}{_plural(len(fragments))}"
        else:
            message = f"📥 No {noun}s found."
    data = {**panel_data, "action": action, "fragments": fragments, "message": message}
    return message, data


def todo_panel(message: str, panel_data: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    status = panel_data.get("status") or "open"
    fragments = list(panel_data.get("fragments") or [])
    if not message:
        label = "completed" if status == "complete" else status
        if fragments:
            message = f"📝 Found **{len(fragments)}** {label} todo{_plural(len(fragments))}"
        else:
            message = f"📝 No {label} todos found."
    data = {**panel_data, "type": "todo", "status": status, "fragments": fragments, "message": message}
    return message, data


#: Panel type -> formatter. Other types are returned unchanged.
PANEL_FORMATTERS = {
    "recall": recall_panel,
    "inbox": inbox_panel,
    "todo": todo_panel,
}


class ResponsePanelStep(Step):
    """Build a panel response from ``with.type``, ``with.message`` and ``with.panel_data``.

    Examples:
        >>> from fragments.dsl.factory import StepFactory
        >>> step = StepFactory().create("response.panel")
        >>> step.execute({"with": {"type": "todo", "panel_data": {"fragments": [1]}}}, {})["message"]
        '📝 Found **1** open todo'
    """

    type_name = "response.panel"

    def validate(self, config: Mapping[str, Any]) -> bool:
        return isinstance(self.params(config).get("panel_data"), Mapping)

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        panel_type = str(params.get("type") or "panel")
        panel_data = params.get("panel_data") or {}
        if not isinstance(panel_data, Mapping):
            raise StepConfigError("response.panel 'panel_data' must be a mapping")
        message = str(params.get("message") or "")

        if dry_run:
            return {
                "dry_run": True,
                "would_show_panel": True,
                "response_type": panel_type,
                "panel_data": dict(panel_data),
                "message": message,
            }

        formatter = PANEL_FORMATTERS.get(panel_type)
        if formatter is None:
            data = dict(panel_data)
        else:
            message, data = formatter(message, panel_data)
        return {
            "type": panel_type,
            "message": message,
            "should_open_panel": True,
            "panel_data": data,
        }


class NotifyStep(Step):
    """Emit a :class:`NotificationSent` event.

    A handler failure is logged and reported as ``delivered: false``.
    """

    type_name = "notify"

    def validate(self, config: Mapping[str, Any]) -> bool:
        return bool(self.params(config).get("message"))

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        message = params.get("message")
        if not message:
            raise StepConfigError("notify step requires 'message'")
        level = str(params.get("level") or "info").lower()
        if level not in NOTIFY_LEVELS:
            raise StepConfigError(f"Invalid notify level: {level!r}. Allowed: {', '.join(NOTIFY_LEVELS)}")
        title = params.get("title")
        channel = params.get("channel")
        notification = {
            "type": "notification",
            "level": level,
            "title": title,
            "message": str(message),
            "channel": channel,
        }

        if dry_run:
            logger.info("[DRY RUN] notify (%s)", level)
            return {"dry_run": True, "would_notify": True, **notification}

        delivered = True
        try:
            self.services.events.emit(
                NotificationSent(level=level, message=str(message), title=title, channel=channel)
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.error("Notification delivery failed: %s", exc)
            delivered = False
        return {**notification, "delivered": delivered}


__all__ = [
    "NOTIFY_LEVELS",
    "NotifyStep",
    "PANEL_FORMATTERS",
    "ResponsePanelStep",
]
