"""Synchronous in-process event bus.

Events are frozen dataclasses; handlers subscribe by event class and run in
registration order on the emitting thread.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


@dataclass(frozen=True, slots=True)
class ToolInvoked:
    """A tool call is about to start."""

    invocation_id: str
    tool_slug: str
    args: Mapping[str, Any]
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolCompleted:
    """A tool call finished, successfully or not."""

    invocation_id: str
    tool_slug: str
    status: str
    duration_ms: float
    response: Any = None


@dataclass(frozen=True, slots=True)
class NotificationSent:
    """A ``notify`` step produced a user notification."""

    level: str
    message: str
    title: str | None = None
    channel: str | None = None


class EventBus:
    """Dispatch events to handlers registered for their class.

    Examples:
        >>> bus = EventBus()
        >>> seen = []
        >>> bus.subscribe(NotificationSent, seen.append)
        >>> bus.emit(NotificationSent(level="info", message="done"))
        >>> seen[0].message
        'done'
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self._history: list[Any] = []
        self.keep_history = False

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: Any) -> None:
        """Deliver ``event`` to every handler of its class.

        Handler exceptions propagate to the emitter.
        """
        logger.debug("Event %s", type(event).__name__)
        if self.keep_history:
            self._history.append(event)
        for handler in list(self._handlers.get(type(event), ())):
            handler(event)

    @property
    def history(self) -> list[Any]:
        """Events emitted while ``keep_history`` was enabled."""
        return list(self._history)


__all__ = [
    "EventBus",
    "NotificationSent",
    "ToolCompleted",
    "ToolInvoked",
]
