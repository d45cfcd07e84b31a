"""Provider factory. Anything unusable degrades to the mock backend."""

from __future__ import annotations

import logging

from app.core.config import get_settings

from .base import BaseProvider, ProviderResult
from .claude import ClaudeProvider
from .groq import GroqProvider
from .mock import MockProvider
from .openai import OpenAIProvider

logger = logging.getLogger(__name__)

__all__ = ["get_provider", "BaseProvider", "ProviderResult", "MockProvider"]

# provider name -> (settings attribute holding the key, class)
_KEYED_PROVIDERS: dict[str, tuple[str, type[OpenAIProvider] | type[ClaudeProvider]]] = {
    "openai": ("openai_api_key", OpenAIProvider),
    "claude": ("anthropic_api_key", ClaudeProvider),
    "groq": ("groq_api_key", GroqProvider),
}


def get_provider(provider_name: str) -> BaseProvider:
    settings = get_settings()
    name = (provider_name or "").lower().strip()

    if name not in settings.ai_allowed_providers:
        logger.warning("Provider %r not allowed, using mock", name)
        return MockProvider()
    if name == "mock":
        return MockProvider()

    entry = _KEYED_PROVIDERS.get(name)
    if entry is None:
        logger.warning("Unknown provider %r, using mock", name)
        return MockProvider()

    key_attr, provider_cls = entry
    api_key = getattr(settings, key_attr)
    if not api_key:
        logger.warning("%s not set, using mock", key_attr.upper())
        return MockProvider()
    return provider_cls(api_key=api_key)
