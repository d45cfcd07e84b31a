"""Provider contract shared by every LLM backend."""

from __future__ import annotations

import abc
from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderResult:
    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


class BaseProvider(abc.ABC):
    name: str = "base"

    @abc.abstractmethod
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
        """Send *prompt* (with optional *system_prompt*) and return the completion text.

        ``json_mode`` asks backends that support it to constrain output to a
        JSON object; others ignore it and rely on the prompt.
        """

    @staticmethod
    def _chat_messages(prompt: str, system_prompt: str | None) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages
