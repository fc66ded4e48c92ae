"""Tests for the HTTP AI provider."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from fragments.ai import AIProvider, AIProviderError, HttpAIProvider
from fragments.ai.provider import MAX_TIMEOUT, MAX_TOKENS_LIMIT


def _provider(handler: Any, api_key: str = "secret") -> HttpAIProvider:
    return HttpAIProvider("http://ai.test/v1/", api_key, "base-model", transport=httpx.MockTransport(handler))


def _completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"model": "served", "choices": [{"message": {"content": content}}], "usage": {"total_tokens": 3}})


class TestHttpAIProvider:
    """Tests for HttpAIProvider.generate_text."""

    def test_protocol(self) -> None:
        """The HTTP provider satisfies the provider protocol."""
        assert isinstance(HttpAIProvider("http://ai.test"), AIProvider)

    def test_request_payload(self) -> None:
        """History, prompt and clamped options are posted to /chat/completions."""
        seen: dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return _completion("Hi")

        result = _provider(handler).generate_text(
            "Say hi",
            [{"role": "system", "content": "Be brief"}],
            {"max_tokens": MAX_TOKENS_LIMIT + 1, "temperature": 0.3, "timeout": MAX_TIMEOUT * 2},
        )
        assert result == {"content": "Hi", "model": "served", "usage": {"total_tokens": 3}}
        assert seen["url"] == "http://ai.test/v1/chat/completions"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["model"] == "base-model"
        assert seen["body"]["max_tokens"] == MAX_TOKENS_LIMIT
        assert seen["body"]["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Say hi"},
        ]

    def test_model_override_and_no_key(self) -> None:
        """options.model wins and an empty key sends no Authorization header."""
        seen: dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["model"] = json.loads(request.content)["model"]
            return _completion("ok")

        _provider(handler, api_key="").generate_text("x", [], {"model": "other"})
        assert seen == {"auth": None, "model": "other"}

    def test_http_error(self) -> None:
        """Error statuses carry the status code."""
        provider = _provider(lambda request: httpx.Response(503, text="busy"))
        with pytest.raises(AIProviderError, match="HTTP 503") as exc_info:
            provider.generate_text("x", [], {})
        assert exc_info.value.status_code == 503

    def test_timeout(self) -> None:
        """Timeouts are reported as provider errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(AIProviderError, match="timed out"):
            _provider(handler).generate_text("x", [], {"timeout": 5})

    def test_connection_error(self) -> None:
        """Transport failures are reported as provider errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AIProviderError, match="request failed"):
            _provider(handler).generate_text("x", [], {})

    @pytest.mark.parametrize(
        "response",
        [httpx.Response(200, text="not json"), httpx.Response(200, json={"choices": []})],
    )
    def test_malformed_body(self, response: httpx.Response) -> None:
        """Bodies without message content are provider errors."""
        with pytest.raises(AIProviderError):
            _provider(lambda request: response).generate_text("x", [], {})
