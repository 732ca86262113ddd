"""
brain/backends.py - Chat Completion Backends

A backend turns one (prompt, GenerateOptions) pair into completion text.
`options.model` must already be a provider model name; logical names are
resolved by LLMReasoningService before a backend sees the request.

    OpenAIBackend   api.openai.com or any OpenAI-compatible endpoint
    OllamaBackend   local Ollama through its OpenAI-compatible /v1 API

openai SDK exceptions are mapped onto the LLMError family so the service's
retry and failover logic never depends on the SDK.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import openai
from openai import AsyncOpenAI

from taskforge.agent.interfaces import GenerateOptions
from taskforge.exceptions import (
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

OLLAMA_DEFAULT_URL = "http://localhost:11434/v1"


class ChatBackend(ABC):
    provider: str = ""

    @abstractmethod
    async def complete(self, prompt: str, options: GenerateOptions) -> str:
        """Return the completion text ("" when the model produced none)."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class OpenAIBackend(ChatBackend):
    provider = "openai"

    def __init__(self, api_key: str, base_url: Optional[str] = None, timeout_seconds: float = 60.0):
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def complete(self, prompt: str, options: GenerateOptions) -> str:
        messages = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._client.chat.completions.create(
                model=options.model,
                messages=messages,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                timeout=self.timeout_seconds,
            )
        except openai.OpenAIError as e:
            raise self._translate(e) from e

        choice = response.choices[0]
        usage = response.usage
        log.debug(
            "llm.completion",
            provider=self.provider,
            model=response.model,
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
            truncated=choice.finish_reason == "length",
        )
        return choice.message.content or ""

    def _translate(self, e: openai.OpenAIError) -> LLMError:
        message = str(e)
        if isinstance(e, openai.RateLimitError):
            return LLMRateLimitError(message, provider=self.provider, retry_after=_retry_after(e))
        if isinstance(e, openai.BadRequestError):
            lowered = message.lower()
            if "context" in lowered or "too long" in lowered:
                return LLMContextError(message, provider=self.provider, status_code=400)
            return LLMInvalidRequestError(message, provider=self.provider, status_code=400)
        if isinstance(e, openai.AuthenticationError):
            return LLMConnectionError(message, provider=self.provider, status_code=401)
        if isinstance(e, openai.APIConnectionError):
            # APITimeoutError is a subclass
            return LLMConnectionError(message, provider=self.provider)
        return LLMError(message, provider=self.provider, status_code=getattr(e, "status_code", None))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} base_url={self.base_url!r}>"


class OllamaBackend(OpenAIBackend):
    """No API key; Ollama ignores the one the SDK insists on sending."""

    provider = "ollama"

    def __init__(self, base_url: str = OLLAMA_DEFAULT_URL, timeout_seconds: float = 60.0):
        super().__init__(api_key="ollama", base_url=base_url, timeout_seconds=timeout_seconds)

    def _translate(self, e: openai.OpenAIError) -> LLMError:
        if isinstance(e, openai.APIConnectionError):
            return LLMConnectionError(
                f"Cannot reach Ollama at {self.base_url}. Is `ollama serve` running?",
                provider=self.provider,
            )
        return super()._translate(e)


def create_backend(
    provider: str,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout_seconds: float = 60.0,
) -> ChatBackend:
    provider = provider.lower().strip()
    if provider == "openai":
        if not api_key:
            raise LLMConnectionError("OPENAI_API_KEY is required", provider="openai")
        return OpenAIBackend(api_key, base_url=base_url, timeout_seconds=timeout_seconds)
    if provider == "ollama":
        return OllamaBackend(base_url or OLLAMA_DEFAULT_URL, timeout_seconds=timeout_seconds)
    raise ValueError(f"Unknown LLM provider: '{provider}'. Valid options: openai, ollama")


def _retry_after(e: openai.RateLimitError) -> Optional[float]:
    headers = getattr(getattr(e, "response", None), "headers", None)
    if not headers:
        return None
    try:
        value = headers.get("retry-after")
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
