"""``tool.call`` step: audited invocation of a registered tool."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Mapping
from typing import Any

from fragments.dsl.base import Step
from fragments.dsl.exceptions import ExternalCallError, StepConfigError
from fragments.dsl.steps.utility import elapsed_ms
from fragments.events import ToolCompleted, ToolInvoked
from fragments.store.base import ToolInvocation
from fragments.tools.exceptions import ToolNotAllowedError, ToolNotFoundError

logger = logging.getLogger(__name__)

#: ``ctx`` keys forwarded to the tool as its invocation context.
INVOCATION_KEYS = ("user_id", "fragment_id", "command_slug", "session_id")


class ToolCallStep(Step):
    """Call ``with.tool`` with ``with.args``.

    The call is bracketed by :class:`ToolInvoked` and :class:`ToolCompleted`
    events. An audit record is written whether the call succeeds or fails.

    Raises:
        ToolNotAllowedError: If policy denies the tool.
        ToolNotFoundError: If the tool is not registered.
        ToolArgumentError: If the arguments violate the tool schema.
        ExternalCallError: If the tool raises.
    """

    type_name = "tool.call"

    def validate(self, config: Mapping[str, Any]) -> bool:
        return bool(self.params(config).get("tool"))

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        params = self.params(config)
        slug = params.get("tool")
        if not slug:
            raise StepConfigError("tool.call step requires 'tool'")
        slug = str(slug)
        args = params.get("args") or {}
        if not isinstance(args, Mapping):
            raise StepConfigError("tool.call 'args' must be a mapping")
        args = dict(args)

        registry = self.services.tools
        if not registry.allowed(slug):
            raise ToolNotAllowedError(slug)
        if not registry.exists(slug):
            raise ToolNotFoundError(slug)
        registry.validate_args(slug, args)

        if dry_run:
            logger.info("[DRY RUN] tool.call %s", slug)
            return {"dry_run": True, "would_call": slug, "args": args}

        invocation_context = self.invocation_context(context)
        invocation_id = str(uuid.uuid4())
        events = self.services.events
        events.emit(ToolInvoked(invocation_id=invocation_id, tool_slug=slug, args=args, context=invocation_context))

        started = time.perf_counter()
        status = "error"
        response: Any = None
        try:
            response = registry.get(slug).call(args, invocation_context)
            status = "success"
        except Exception as exc:
            response = {"error": str(exc), "exception": type(exc).__name__}
            logger.error("Tool '%s' failed: %s", slug, exc)
            raise ExternalCallError(self.type_name, f"Tool '{slug}' failed: {exc}") from exc
        finally:
            duration = elapsed_ms(started)
            self.audit(invocation_id, slug, status, duration, args, response, invocation_context)
            events.emit(
                ToolCompleted(
                    invocation_id=invocation_id,
                    tool_slug=slug,
                    status=status,
                    duration_ms=duration,
                    response=response,
                )
            )

        return {
            "tool": slug,
            "invocation_id": invocation_id,
            "status": status,
            "result": response,
            "duration_ms": duration,
        }

    @staticmethod
    def invocation_context(context: Mapping[str, Any]) -> dict[str, Any]:
        """Pick the invocation fields of ``context['ctx']``."""
        ctx = context.get("ctx") or {}
        return {key: ctx.get(key) for key in INVOCATION_KEYS}

    def audit(
        self,
        invocation_id: str,
        slug: str,
        status: str,
        duration: float,
        args: Mapping[str, Any],
        response: Any,
        invocation_context: Mapping[str, Any],
    ) -> None:
        log = self.services.invocation_log
        if log is None:
            logger.debug("No invocation log configured; tool call %s not persisted", invocation_id)
            return
        log.record(
            ToolInvocation(
                id=invocation_id,
                tool_slug=slug,
                status=status,
                duration_ms=duration,
                request=dict(args),
                response=response,
                user_id=invocation_context.get("user_id"),
                command_slug=invocation_context.get("command_slug"),
                fragment_id=invocation_context.get("fragment_id"),
            )
        )


__all__ = [
    "INVOCATION_KEYS",
    "ToolCallStep",
]
