"""
brain/service.py - LLM-backed ReasoningService

The agent's only door to a language model. One generate_text() call:

  1. resolves the logical model name in GenerateOptions ("advanced",
     "basic") through llm.model_aliases,
  2. asks the first backend, retrying transient failures (connection,
     rate limit) with exponential backoff,
  3. fails over to the next backend once a backend gives up.

Context overflow and invalid-request errors would fail the same way on every
backend, so they are raised straight away.
"""

from __future__ import annotations

import asyncio
import random
from typing import Optional, Sequence

from taskforge.agent.interfaces import GenerateOptions, ReasoningService
from taskforge.brain.backends import ChatBackend
from taskforge.config.settings import LLMConfig
from taskforge.exceptions import LLMContextError, LLMError, LLMInvalidRequestError, LLMRateLimitError
from taskforge.observability.logger import get_logger

log = get_logger(__name__)


class LLMReasoningService(ReasoningService):

    def __init__(self, backends: Sequence[ChatBackend], settings: LLMConfig):
        if not backends:
            raise ValueError("LLMReasoningService needs at least one backend")
        self._backends = list(backends)
        self._settings = settings

    @property
    def backends(self) -> list[ChatBackend]:
        return list(self._backends)

    async def generate_text(self, prompt: str, options: GenerateOptions) -> str:
        request = options.model_copy(update={"model": self._settings.resolve_model(options.model)})
        last_error: Optional[LLMError] = None

        for i, backend in enumerate(self._backends):
            if last_error is not None:
                log.warning(
                    "llm.failing_over",
                    to_backend=repr(backend),
                    reason=str(last_error),
                )
            try:
                return await self._with_retry(backend, prompt, request)
            except (LLMContextError, LLMInvalidRequestError):
                raise
            except LLMError as e:
                last_error = e
                log.error(
                    "llm.backend_exhausted",
                    backend=repr(backend),
                    error=str(e),
                    will_fail_over=i < len(self._backends) - 1,
                )

        if len(self._backends) == 1:
            raise last_error
        raise LLMError(f"All LLM backends failed. Last error: {last_error}", provider="all")

    async def _with_retry(self, backend: ChatBackend, prompt: str, request: GenerateOptions) -> str:
        retry = self._settings.retry
        attempts = max(1, retry.max_attempts)
        for attempt in range(attempts - 1):
            try:
                return await backend.complete(prompt, request)
            except LLMError as e:
                if not e.transient:
                    raise
                if isinstance(e, LLMRateLimitError) and e.retry_after:
                    delay = min(e.retry_after, retry.max_delay)
                else:
                    delay = min(retry.base_delay * (2 ** attempt) + random.uniform(0, 0.5), retry.max_delay)
                log.warning(
                    "llm.retrying",
                    backend=repr(backend),
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    delay_s=round(delay, 2),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(delay)
        return await backend.complete(prompt, request)

    def __repr__(self) -> str:
        names = ", ".join(b.provider for b in self._backends)
        return f"<LLMReasoningService backends=[{names}]>"
