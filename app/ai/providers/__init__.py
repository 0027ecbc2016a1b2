"""
AI Providers Module - Unified clients for multiple LLM providers.

- Google Gemini (default for briefs and HTML passes)
- OpenAI, or any OpenAI-compatible endpoint via OPENAI_BASE_URL

Each provider has the same interface, making them interchangeable:
    response = await provider.generate(prompt, **kwargs)
    async for chunk in provider.stream(messages, system_prompt=...): ...
"""

from app.ai.providers.base import (
    AIProvider,
    AIResponse,
    FinishReason,
    ProviderError,
    ProviderType,
    StreamChunk,
    TokenUsage,
)
from app.ai.providers.gemini import GeminiProvider, gemini_provider
from app.ai.providers.openai_provider import OpenAIProvider, openai_provider


def get_provider(name: str) -> AIProvider:
    """
    Resolve a configured provider name ("gemini" / "openai") to its singleton.

    Raises:
        ValueError: for an unknown name (a configuration mistake)
    """
    providers = {
        ProviderType.GEMINI.value: gemini_provider,
        ProviderType.OPENAI.value: openai_provider,
    }
    try:
        return providers[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown AI provider: {name!r}")


__all__ = [
    "AIProvider",
    "AIResponse",
    "FinishReason",
    "ProviderError",
    "ProviderType",
    "StreamChunk",
    "TokenUsage",
    "GeminiProvider",
    "gemini_provider",
    "OpenAIProvider",
    "openai_provider",
    "get_provider",
]
