"""OpenAI chat completions backend."""

from __future__ import annotations

import logging
import time

import httpx

from .base import BaseProvider, ProviderResult

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


class OpenAIProvider(BaseProvider):
    name = "openai"
    chat_url = OPENAI_CHAT_URL
    default_model = "gpt-4o-mini"

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
        model = model or self.default_model
        body: dict = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": self._chat_messages(prompt, system_prompt),
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        started = time.monotonic()
        async with httpx.AsyncClient(timeout=timeout_seconds, transport=self._transport) as client:
            resp = await client.post(
                self.chat_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()

        usage = data.get("usage") or {}
        return ProviderResult(
            raw_text=data["choices"][0]["message"]["content"] or "",
            model=data.get("model") or model,
            provider=self.name,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            latency_ms=round((time.monotonic() - started) * 1000, 2),
        )
