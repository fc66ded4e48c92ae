"""``ai.generate`` step: templated text generation through an AI provider."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping
from typing import Any

from fragments.dsl.base import Step
from fragments.dsl.exceptions import AIDisabledError, ExternalCallError, OutputShapeError, StepConfigError
from fragments.dsl.template import is_truthy
from fragments.utils import truncate

logger = logging.getLogger(__name__)

#: Sampling temperature sent with every request.
TEMPERATURE = 0.3

#: Characters of raw or extracted text quoted in shape errors.
EXCERPT_LENGTH = 200

_CLOSERS = {"{": "}", "[": "]"}


def extract_json(text: str) -> str | None:
    """Return the first balanced ``{...}`` or ``[...]`` substring of ``text``.

    Brackets inside JSON strings are ignored.

    Examples:
        >>> extract_json('Sure! Here is the data: {"a": 1} Hope that helps.')
        '{"a": 1}'
        >>> extract_json("no json here") is None
        True
    """
    for start, char in enumerate(text):
        if char not in _CLOSERS:
            continue
        stack = [_CLOSERS[char]]
        in_string = False
        escaped = False
        for index in range(start + 1, len(text)):
            current = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif current == "\\":
                    escaped = True
                elif current == '"':
                    in_string = False
            elif current == '"':
                in_string = True
            elif current in _CLOSERS:
                stack.append(_CLOSERS[current])
            elif current in ("}", "]"):
                if current != stack[-1]:
                    break
                stack.pop()
                if not stack:
                    return text[start : index + 1]
    return None


def cache_key(prompt: str, model: str | None, max_tokens: int, temperature: float) -> str:
    """Cache key covering the prompt and every generation parameter."""
    payload = json.dumps([prompt, model, max_tokens, temperature], ensure_ascii=False)
    return "ai.generate:" + hashlib.md5(payload.encode("utf-8")).hexdigest()  # noqa: S324


class AIGenerateStep(Step):
    """Generate text for ``prompt``.

    Parameters (top level or ``with``): ``prompt`` (required), ``expect``
    (``text`` or ``json``), ``max_tokens``, ``timeout``, ``model``,
    ``history``, ``cache``, ``fallback`` and ``fallback_text``.

    Raises:
        AIDisabledError: If ``ai.enabled`` is false.
        ExternalCallError: If the provider fails and no fallback is declared.
        OutputShapeError: If ``expect: json`` and the text holds no valid JSON.
    """

    type_name = "ai.generate"

    def validate(self, config: Mapping[str, Any]) -> bool:
        return bool(self.params(config).get("prompt"))

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        *,
        dry_run: bool = False,
    ) -> Any:
        if not self.services.setting("ai.enabled", True):
            raise AIDisabledError()
        params = self.params(config)
        prompt = params.get("prompt")
        if not prompt:
            raise StepConfigError("ai.generate step requires 'prompt'")
        prompt = self.services.template.render(prompt, context)

        expect = str(params.get("expect", "text")).lower()
        max_tokens = int(params.get("max_tokens") or self.services.setting("ai.default_max_tokens", 500))
        timeout = float(params.get("timeout") or self.services.setting("ai.default_timeout", 30))
        model = params.get("model") or self.services.setting("ai.model")
        use_cache = is_truthy(params.get("cache", False))

        if dry_run:
            logger.info("[DRY RUN] ai.generate (%d chars, expect=%s)", len(prompt), expect)
            return {
                "dry_run": True,
                "would_generate": True,
                "prompt_preview": truncate(prompt, 100),
                "expect": expect,
                "max_tokens": max_tokens,
                "cache": use_cache,
            }

        key = cache_key(prompt, model, max_tokens, TEMPERATURE)
        cache = self.services.cache
        if use_cache and cache.has(key):
            logger.debug("ai.generate cache hit %s", key)
            return self.shape(cache.get(key), expect)

        provider = self.services.ai_provider
        if provider is None:
            raise StepConfigError("ai.generate step requires a configured AI provider")
        options = {"max_tokens": max_tokens, "temperature": TEMPERATURE, "timeout": timeout}
        if model:
            options["model"] = model
        history = params.get("history") or []

        try:
            response = provider.generate_text(prompt, history, options)
            text = str(response.get("content") or response.get("text") or "")
        except Exception as exc:  # pylint: disable=broad-exception-caught
            if is_truthy(params.get("fallback", False)):
                logger.warning("AI provider failed, using fallback text: %s", exc)
                return str(params.get("fallback_text") or "")
            raise ExternalCallError(self.type_name, f"AI provider failed: {exc}") from exc

        if use_cache:
            cache.set(key, text, float(self.services.setting("ai.cache_ttl", 3600)))
        return self.shape(text, expect)

    def shape(self, text: str, expect: str) -> Any:
        """Return ``text``, or the JSON it embeds when ``expect`` is ``json``."""
        if expect != "json":
            return text
        extracted = extract_json(text)
        if extracted is None:
            raise OutputShapeError(
                self.type_name, f"expected JSON but found none. Raw: {truncate(text, EXCERPT_LENGTH)}"
            )
        try:
            return json.loads(extracted)
        except ValueError as exc:
            raise OutputShapeError(
                self.type_name,
                f"invalid JSON ({exc.args[0] if exc.args else exc}). "
                f"Raw: {truncate(text, EXCERPT_LENGTH)} Extracted: {truncate(extracted, EXCERPT_LENGTH)}",
            ) from exc


__all__ = [
    "AIGenerateStep",
    "cache_key",
    "extract_json",
]
