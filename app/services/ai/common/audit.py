"""Audit entries for LLM calls. Prompts are stored hashed unless raw storage is switched on."""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.services.transition_service import create_audit_log

from .providers.base import ProviderResult

logger = logging.getLogger(__name__)

SCOPE_ACTIONS: dict[str, str] = {
    "pricing": "AI_PRICE_ESTIMATED",
}


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def log_ai_run(
    db: Session,
    *,
    scope: str,
    provider_result: ProviderResult,
    prompt_text: str,
    parsed_output: dict[str, Any] | None,
    actor_id: str | None = None,
    entity_id: str | None = None,
) -> None:
    settings = get_settings()
    metadata: dict[str, Any] = {
        "scope": scope,
        "provider": provider_result.provider,
        "model": provider_result.model,
        "prompt_tokens": provider_result.prompt_tokens,
        "completion_tokens": provider_result.completion_tokens,
        "latency_ms": provider_result.latency_ms,
        "prompt_hash": _sha256(prompt_text),
        "response_hash": _sha256(provider_result.raw_text),
    }
    if settings.ai_debug_store_raw:
        metadata["prompt_raw"] = prompt_text
        metadata["response_raw"] = provider_result.raw_text

    create_audit_log(
        db,
        entity_type="ai",
        entity_id=entity_id or str(uuid.uuid4()),
        action=SCOPE_ACTIONS.get(scope, "AI_RUN"),
        old_value=None,
        new_value=parsed_output,
        actor_type="SYSTEM",
        actor_id=actor_id,
        metadata=metadata,
    )
