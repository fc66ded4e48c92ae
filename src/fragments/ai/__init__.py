"""AI provider integration."""

from fragments.ai.exceptions import AIProviderError
from fragments.ai.provider import AIProvider, HttpAIProvider

__all__ = [
    "AIProvider",
    "AIProviderError",
    "HttpAIProvider",
]
