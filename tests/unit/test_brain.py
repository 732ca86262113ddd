"""
tests/unit/test_brain.py - LLM Brain Tests

Covers:
  - create_backend provider selection
  - OpenAIBackend request building from GenerateOptions + error mapping
  - OllamaBackend helpful connection error
  - LLMReasoningService alias resolution, retry/backoff and failover
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import openai as oai
import pytest

from taskforge.agent.interfaces import GenerateOptions
from taskforge.brain import ChatBackend, LLMReasoningService, OllamaBackend, OpenAIBackend, create_backend
from taskforge.config.settings import LLMConfig, LLMRetryConfig
from taskforge.exceptions import (
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def options() -> GenerateOptions:
    return GenerateOptions(model="gpt-4o", temperature=0.2, max_tokens=100, system_prompt="Be terse.")


@pytest.fixture
def no_sleep():
    with patch("taskforge.brain.service.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


def _make_backend(*effects, provider: str = "fake") -> ChatBackend:
    backend = MagicMock(spec=ChatBackend)
    backend.provider = provider
    backend.complete = AsyncMock(side_effect=list(effects))
    return backend


def _make_service(*backends, **retry) -> LLMReasoningService:
    settings = LLMConfig(
        model_aliases={"advanced": "gpt-4o", "basic": "gpt-4o-mini"},
        default_model="gpt-4o",
        retry=LLMRetryConfig(**{"max_attempts": 3, **retry}),
    )
    return LLMReasoningService(list(backends), settings)


def _completion(content="Hello!", finish_reason="stop", model="gpt-4o"):
    mock = MagicMock()
    mock.model = model
    mock.choices = [MagicMock()]
    mock.choices[0].finish_reason = finish_reason
    mock.choices[0].message.content = content
    mock.usage.prompt_tokens = 10
    mock.usage.completion_tokens = 5
    return mock


def _status_error(cls, message: str, headers=None):
    return cls(message, response=MagicMock(status_code=400, headers=headers or {}), body={})


# ─────────────────────────────────────────────────────────────────────────────
# Factory
# ─────────────────────────────────────────────────────────────────────────────


class TestCreateBackend:
    def test_create_openai(self):
        backend = create_backend("openai", api_key="sk-test", timeout_seconds=9)
        assert isinstance(backend, OpenAIBackend)
        assert backend.timeout_seconds == 9

    def test_create_ollama(self):
        backend = create_backend("ollama")
        assert isinstance(backend, OllamaBackend)
        assert backend.base_url == "http://localhost:11434/v1"

    def test_case_insensitive_provider(self):
        assert create_backend(" OpenAI ", api_key="sk-test").provider == "openai"

    def test_openai_missing_key_raises(self):
        with pytest.raises(LLMConnectionError):
            create_backend("openai")

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError):
            create_backend("grok")


# ─────────────────────────────────────────────────────────────────────────────
# OpenAI + Ollama backends
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestOpenAIBackend:
    @pytest.fixture
    def backend(self):
        return OpenAIBackend(api_key="sk-test-fake", timeout_seconds=12)

    async def test_request_follows_options(self, backend, options):
        create = AsyncMock(return_value=_completion("Hello! How can I help?"))
        backend._client.chat.completions.create = create

        text = await backend.complete("Say hello.", options)

        assert text == "Hello! How can I help?"
        sent = create.call_args.kwargs
        assert sent["model"] == "gpt-4o"
        assert sent["temperature"] == 0.2
        assert sent["max_tokens"] == 100
        assert sent["timeout"] == 12
        assert sent["messages"] == [
            {"role": "system", "content": "Be terse."},
            {"role": "user", "content": "Say hello."},
        ]

    async def test_no_system_prompt_and_empty_content(self, backend):
        create = AsyncMock(return_value=_completion(content=None, finish_reason="length"))
        backend._client.chat.completions.create = create

        assert await backend.complete("hi", GenerateOptions(model="gpt-4o")) == ""
        assert [m["role"] for m in create.call_args.kwargs["messages"]] == ["user"]

    async def test_auth_error_raises_connection_error(self, backend, options):
        backend._client.chat.completions.create = AsyncMock(
            side_effect=oai.AuthenticationError("Invalid key", response=MagicMock(headers={}), body={})
        )
        with pytest.raises(LLMConnectionError) as exc_info:
            await backend.complete("hi", options)
        assert exc_info.value.status_code == 401
        assert exc_info.value.provider == "openai"

    async def test_rate_limit_carries_retry_after(self, backend, options):
        backend._client.chat.completions.create = AsyncMock(
            side_effect=_status_error(oai.RateLimitError, "Rate limit", headers={"retry-after": "7"})
        )
        with pytest.raises(LLMRateLimitError) as exc_info:
            await backend.complete("hi", options)
        assert exc_info.value.retry_after == 7.0

    async def test_context_overflow(self, backend, options):
        backend._client.chat.completions.create = AsyncMock(
            side_effect=_status_error(oai.BadRequestError, "maximum context length exceeded")
        )
        with pytest.raises(LLMContextError):
            await backend.complete("hi", options)

    async def test_other_bad_request(self, backend, options):
        backend._client.chat.completions.create = AsyncMock(
            side_effect=_status_error(oai.BadRequestError, "unknown parameter")
        )
        with pytest.raises(LLMInvalidRequestError):
            await backend.complete("hi", options)


@pytest.mark.asyncio
class TestOllamaBackend:

    async def test_connection_error_gives_helpful_message(self, options):
        backend = OllamaBackend()
        backend._client.chat.completions.create = AsyncMock(
            side_effect=oai.APIConnectionError(request=MagicMock())
        )
        with pytest.raises(LLMConnectionError, match="ollama serve") as exc_info:
            await backend.complete("hi", options)
        assert exc_info.value.provider == "ollama"


# ─────────────────────────────────────────────────────────────────────────────
# Reasoning service
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestLLMReasoningService:

    async def test_resolves_alias_before_calling_backend(self):
        backend = _make_backend("the answer")
        service = _make_service(backend)

        text = await service.generate_text(
            "What next?",
            GenerateOptions(model="basic", temperature=0.2, max_tokens=256, system_prompt="Be terse."),
        )

        assert text == "the answer"
        prompt, sent = backend.complete.call_args.args
        assert prompt == "What next?"
        assert sent.model == "gpt-4o-mini"
        assert (sent.temperature, sent.max_tokens, sent.system_prompt) == (0.2, 256, "Be terse.")

    async def test_missing_model_uses_default(self):
        backend = _make_backend("ok")
        await _make_service(backend).generate_text("hi", GenerateOptions())
        assert backend.complete.call_args.args[1].model == "gpt-4o"

    async def test_needs_a_backend(self):
        with pytest.raises(ValueError):
            LLMReasoningService([], LLMConfig())


@pytest.mark.asyncio
class TestRetryAndFailover:

    async def test_transient_errors_are_retried(self, options, no_sleep):
        backend = _make_backend(LLMConnectionError("blip"), LLMRateLimitError("slow down"), "ok")

        assert await _make_service(backend).generate_text("hi", options) == "ok"
        assert backend.complete.await_count == 3
        assert no_sleep.await_count == 2

    async def test_retry_after_is_honoured(self, options, no_sleep):
        backend = _make_backend(LLMRateLimitError("slow down", retry_after=7.0), "ok")
        await _make_service(backend, max_delay=30.0).generate_text("hi", options)
        no_sleep.assert_awaited_once_with(7.0)

    async def test_backoff_is_capped(self, options, no_sleep):
        backend = _make_backend(LLMConnectionError("a"), LLMConnectionError("b"), "ok")
        await _make_service(backend, base_delay=10.0, max_delay=4.0).generate_text("hi", options)
        assert [c.args[0] for c in no_sleep.await_args_list] == [4.0, 4.0]

    async def test_single_backend_exhaustion_raises_last_error(self, options, no_sleep):
        backend = _make_backend(LLMConnectionError("one"), LLMConnectionError("two"))
        with pytest.raises(LLMConnectionError, match="two"):
            await _make_service(backend, max_attempts=2).generate_text("hi", options)

    async def test_permanent_errors_are_not_retried_or_failed_over(self, options, no_sleep):
        primary = _make_backend(LLMContextError("too long"))
        fallback = _make_backend("ok")
        with pytest.raises(LLMContextError):
            await _make_service(primary, fallback).generate_text("hi", options)
        assert primary.complete.await_count == 1
        fallback.complete.assert_not_awaited()

    async def test_fails_over_to_fallback(self, options, no_sleep):
        primary = _make_backend(LLMConnectionError("down"), LLMConnectionError("down"))
        fallback = _make_backend("from fallback")

        text = await _make_service(primary, fallback, max_attempts=2).generate_text("hi", options)

        assert text == "from fallback"
        assert primary.complete.await_count == 2
        assert fallback.complete.call_args.args[1].model == "gpt-4o"

    async def test_non_transient_error_fails_over_without_retry(self, options, no_sleep):
        primary = _make_backend(LLMError("server error", status_code=500))
        fallback = _make_backend("ok")

        assert await _make_service(primary, fallback).generate_text("hi", options) == "ok"
        assert primary.complete.await_count == 1
        no_sleep.assert_not_awaited()

    async def test_all_backends_failing(self, options, no_sleep):
        service = _make_service(
            _make_backend(LLMConnectionError("a")),
            _make_backend(LLMConnectionError("b")),
            max_attempts=1,
        )
        with pytest.raises(LLMError, match="All LLM backends failed") as exc_info:
            await service.generate_text("hi", options)
        assert exc_info.value.provider == "all"

    async def test_repr_lists_providers(self):
        service = _make_service(_make_backend(provider="ollama"), _make_backend(provider="openai"))
        assert repr(service) == "<LLMReasoningService backends=[ollama, openai]>"
