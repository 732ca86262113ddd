"""
agent/reflector.py - Reflection Phase

Optional, heuristically triggered summary of lessons learned so far.

The engine decides *when* (should_reflect) and runs reflect() as a detached
background task on a snapshot of plan and history, so a slow or failing
reflection never holds up the step loop. reflect() never raises; failures
are logged and yield None.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from taskforge.agent import prompts
from taskforge.agent.decoding import as_confidence, as_str_list, tolerant_decode
from taskforge.agent.interfaces import GenerateOptions, ReasoningService
from taskforge.agent.types import (
    ExecutionContext,
    HistoryEntry,
    ObservationResult,
    ReflectionResult,
    TaskStep,
)
from taskforge.config.settings import AgentConfig
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

LOW_CONFIDENCE = 0.5
LOW_SUCCESS_RATE = 0.7


def should_reflect(observation: ObservationResult) -> bool:
    """Trouble signals: low confidence, reported issues, or a poor tool success rate."""
    if observation.confidence < LOW_CONFIDENCE:
        return True
    if observation.issues:
        return True
    stats = observation.execution_stats
    if stats is not None and stats.total > 0 and stats.success_rate < LOW_SUCCESS_RATE:
        return True
    return False


class ReflectionPhase:

    def __init__(self, reasoning: ReasoningService, config: AgentConfig):
        self._reasoning = reasoning
        self._config = config

    def update_config(self, config: AgentConfig) -> None:
        self._config = config

    async def reflect(
        self,
        plan: Sequence[TaskStep],
        history: Sequence[HistoryEntry],
        context: ExecutionContext,
    ) -> Optional[ReflectionResult]:
        options = GenerateOptions(
            model=self._config.reflection_model,
            temperature=0.4,
            max_tokens=1024,
            system_prompt=prompts.REFLECTOR_SYSTEM,
        )
        log.info("reflection.start", steps=len(plan), history=len(history))
        try:
            response = await self._reasoning.generate_text(
                prompts.reflection_prompt(plan, history, context), options
            )
            data = tolerant_decode(response)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("reflection.failed", error=str(e), error_type=type(e).__name__)
            return None

        result = ReflectionResult(
            what_worked=as_str_list(data.get("whatWorked")),
            what_didnt_work=as_str_list(data.get("whatDidntWork")),
            lessons_learned=as_str_list(data.get("lessonsLearned")),
            improvements=as_str_list(data.get("improvements")),
            next_time_strategy=str(data.get("nextTimeStrategy") or ""),
            confidence=as_confidence(data.get("confidence")),
        )
        log.info("reflection.complete", lessons=len(result.lessons_learned))
        return result
