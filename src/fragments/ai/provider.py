"""AI text generation providers.

Providers return a mapping carrying the generated text under ``content``
(or ``text``) plus provider metadata.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

import httpx

from fragments.ai.exceptions import AIProviderError

logger = logging.getLogger(__name__)

#: Upper bound applied to any requested timeout (seconds).
MAX_TIMEOUT = 120.0

#: Upper bound applied to any requested completion size.
MAX_TOKENS_LIMIT = 8192


@runtime_checkable
class AIProvider(Protocol):
    """Text generation backend used by the ``ai.generate`` step."""

    def generate_text(
        self,
        prompt: str,
        history: Sequence[Mapping[str, str]],
        options: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        """Generate text for ``prompt``.

        Args:
            prompt: User prompt.
            history: Previous ``{"role", "content"}`` messages.
            options: ``max_tokens``, ``temperature``, ``timeout`` and optional ``model``.

        Returns:
            Mapping with ``content`` or ``text``.
        """
        ...


class HttpAIProvider:
    """OpenAI-compatible ``/chat/completions`` client.

    A new ``httpx.Client`` is opened per call so no connection outlives
    the request.

    Args:
        base_url: API root, e.g. ``https://api.openai.com/v1``.
        api_key: Bearer token (may be empty for local servers).
        model: Default model name.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).

    Examples:
        >>> provider = HttpAIProvider("http://localhost:11434/v1", "", "llama3")
        >>> provider.generate_text("Say hi", [], {"max_tokens": 10})  # doctest: +SKIP
        {'content': 'Hi!', 'model': 'llama3', 'usage': {...}}
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self._transport = transport

    def generate_text(
        self,
        prompt: str,
        history: Sequence[Mapping[str, str]],
        options: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        timeout = min(float(options.get("timeout", 30)), MAX_TIMEOUT)
        model = options.get("model") or self.model
        payload = {
            "model": model,
            "messages": [*(dict(m) for m in history), {"role": "user", "content": prompt}],
            "max_tokens": min(int(options.get("max_tokens", 500)), MAX_TOKENS_LIMIT),
            "temperature": float(options.get("temperature", 0.3)),
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        logger.debug("POST %s/chat/completions model=%s timeout=%.1fs", self.base_url, model, timeout)
        try:
            with httpx.Client(base_url=self.base_url, timeout=timeout, transport=self._transport) as client:
                response = client.post("/chat/completions", json=payload, headers=headers)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as exc:
            raise AIProviderError(f"AI provider timed out after {timeout:.0f}s") from exc
        except httpx.HTTPStatusError as exc:
            raise AIProviderError(
                f"AI provider returned HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            raise AIProviderError(f"AI provider request failed: {exc}") from exc
        except ValueError as exc:
            raise AIProviderError("AI provider returned invalid JSON") from exc

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AIProviderError("AI provider response has no message content") from exc
        return {"content": content, "model": body.get("model", model), "usage": body.get("usage", {})}


__all__ = [
    "AIProvider",
    "HttpAIProvider",
]
