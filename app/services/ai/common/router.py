"""Resolves provider and model for an AI scope: request override > environment > mock."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.config import Settings, get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedConfig:
    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


def _scope_defaults(scope: str, settings: Settings) -> tuple[str, str]:
    if scope == "pricing":
        return settings.ai_pricing_provider, settings.ai_pricing_model
    return "", ""


def resolve(
    scope: str,
    *,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> ResolvedConfig:
    """Pick the backend for *scope*.

    Overrides only count when ``enable_ai_overrides`` is on. A model outside
    the provider's allowlist is replaced by the first allowed one.
    """
    settings = get_settings()
    env_provider, env_model = _scope_defaults(scope, settings)

    provider_name = ""
    model = ""
    if settings.enable_ai_overrides:
        provider_name = (override_provider or "").strip().lower()
        model = (override_model or "").strip()
    provider_name = provider_name or (env_provider or "").strip().lower() or "mock"
    model = model or (env_model or "").strip()

    allowed_models = settings.ai_allowed_models.get(provider_name, [])
    if allowed_models and model not in allowed_models:
        if model:
            logger.warning("Model %r not allowed for %r, using %r", model, provider_name, allowed_models[0])
        model = allowed_models[0]

    return ResolvedConfig(
        provider=get_provider(provider_name),
        model=model,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
        timeout_seconds=settings.ai_timeout_seconds,
    )
