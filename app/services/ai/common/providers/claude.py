"""Anthropic messages backend."""

from __future__ import annotations

import logging
import time

import httpx

from .base import BaseProvider, ProviderResult

logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"


class ClaudeProvider(BaseProvider):
    name = "claude"

    def __init__(self, api_key: str, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._api_key = api_key
        self._transport = transport

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        model: str = "",
        temperature: float = 0.2,
        max_tokens: int = 300,
        timeout_seconds: float = 15.0,
        json_mode: bool = False,
    ) -> ProviderResult:
        model = model or "claude-3-5-haiku-20241022"
        body: dict = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        # System text is a top-level field here, not a message role.
        if system_prompt:
            body["system"] = system_prompt

        started = time.monotonic()
        async with httpx.AsyncClient(timeout=timeout_seconds, transport=self._transport) as client:
            resp = await client.post(
                ANTHROPIC_MESSAGES_URL,
                headers={"x-api-key": self._api_key, "anthropic-version": "2023-06-01"},
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()

        text = "".join(block.get("text", "") for block in data.get("content") or [] if block.get("type") == "text")
        usage = data.get("usage") or {}
        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            latency_ms=round((time.monotonic() - started) * 1000, 2),
        )
