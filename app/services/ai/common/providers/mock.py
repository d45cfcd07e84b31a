"""Deterministic provider used in tests and whenever no real backend is configured."""

from __future__ import annotations

import json
import time

from .base import BaseProvider, ProviderResult

MOCK_PRICE = 60


class MockProvider(BaseProvider):
    name = "mock"

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
        started = time.monotonic()
        text = json.dumps(
            {
                "price": MOCK_PRICE,
                "needs_clarification": False,
                "safety_concern": False,
            }
        )
        return ProviderResult(
            raw_text=text,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=len(((system_prompt or "") + " " + prompt).split()),
            completion_tokens=len(text.split()),
            latency_ms=round((time.monotonic() - started) * 1000, 2),
        )
