"""LLM completion gateway protocol and concrete adapters."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from gravitas.config import LLMConfig
from gravitas.errors import LLMError
from gravitas.gateways.http import post_json


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class Completion:
    content: str
    usage: TokenUsage


@runtime_checkable
class LLMGateway(Protocol):
    """Protocol for chat-completion providers. Failures raise ``LLMError``."""

    async def complete(
        self,
        system_prompt: str,
        user_input: str,
        *,
        temperature: float = 0.8,
        max_tokens: int = 1200,
        timeout_seconds: float = 30.0,
    ) -> Completion: ...


class NoopLLMGateway:
    """Deterministic offline gateway that acknowledges the input."""

    async def complete(
        self,
        system_prompt: str,
        user_input: str,
        *,
        temperature: float = 0.8,
        max_tokens: int = 1200,
        timeout_seconds: float = 30.0,
    ) -> Completion:
        del system_prompt, temperature, max_tokens, timeout_seconds
        return Completion(content=f"I hear you: {user_input.strip()}", usage=TokenUsage())


def parse_completion(data: dict[str, Any]) -> Completion:
    """Read content and token usage from a chat-completions body."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise LLMError("provider response missing choices[0].message.content") from exc
    if not isinstance(content, str):
        raise LLMError("provider response content must be a string")
    usage = data.get("usage") or {}
    return Completion(
        content=content,
        usage=TokenUsage(
            prompt_tokens=int(usage.get("prompt_tokens", 0)),
            completion_tokens=int(usage.get("completion_tokens", 0)),
        ),
    )


class OpenAICompatibleLLMGateway:
    """Chat-completions adapter for OpenAI and compatible servers."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/chat/completions"

    async def complete(
        self,
        system_prompt: str,
        user_input: str,
        *,
        temperature: float = 0.8,
        max_tokens: int = 1200,
        timeout_seconds: float = 30.0,
    ) -> Completion:
        body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_input},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        data = await asyncio.to_thread(
            post_json,
            self._url,
            body,
            api_key=self._api_key,
            timeout=timeout_seconds,
            error=LLMError,
        )
        return parse_completion(data)


def build_llm_gateway(config: LLMConfig) -> LLMGateway:
    """Create the gateway named by ``config.provider``."""
    provider = config.provider.strip().lower()
    if provider == "noop":
        return NoopLLMGateway()
    if provider != "openai":
        raise ValueError(
            f"unknown LLM provider {config.provider!r} (expected 'openai' or 'noop')"
        )
    if not config.api_key:
        raise ValueError("LLMConfig.api_key is required for the openai provider")
    return OpenAICompatibleLLMGateway(
        model=config.model, api_key=config.api_key, base_url=config.base_url
    )
