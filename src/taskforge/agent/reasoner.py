"""
agent/reasoner.py - Reasoning Phase

Given the current step, the execution context and a bounded window of recent
history, asks the reasoning service what to do next and how confident it is.

Never raises past reason(): service errors, unparseable output and results
that fail validate_reasoning_result() all degrade to a deterministic
low-confidence fallback (0.3), which the engine's confidence gate then
treats like any other value.
"""

from __future__ import annotations

from typing import Any, Sequence

from taskforge.agent import prompts
from taskforge.agent.decoding import as_confidence, as_str_list, tolerant_decode
from taskforge.agent.interfaces import GenerateOptions, ReasoningService
from taskforge.agent.types import (
    ExecutionContext,
    HistoryEntry,
    ReasoningResult,
    TaskStep,
    Thought,
    ThoughtType,
)
from taskforge.config.settings import AgentConfig
from taskforge.exceptions import StructuredOutputError
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

_REQUIRED = ("thoughts", "nextAction", "confidence", "reasoning", "alternatives")

FALLBACK_CONFIDENCE = 0.3
FALLBACK_ACTION = "continue current step"
FALLBACK_ALTERNATIVES = ["retry reasoning", "skip current step", "request user guidance"]


class ReasoningPhase:

    def __init__(self, reasoning: ReasoningService, config: AgentConfig):
        self._reasoning = reasoning
        self._config = config

    def update_config(self, config: AgentConfig) -> None:
        self._config = config

    async def reason(
        self,
        step: TaskStep,
        context: ExecutionContext,
        history: Sequence[HistoryEntry],
    ) -> ReasoningResult:
        config = self._config
        window = list(history)[-config.history_window:]
        options = GenerateOptions(
            model=config.reasoning_model,
            temperature=0.3,
            max_tokens=2048,
            system_prompt=prompts.REASONER_SYSTEM,
        )
        log.debug("reasoning.start", step_id=step.id, history_window=len(window))

        try:
            response = await self._reasoning.generate_text(
                prompts.reasoning_prompt(step, context, window), options
            )
            result = self._parse(response, step)
            if not validate_reasoning_result(result):
                raise StructuredOutputError(
                    f"reasoning result failed validation (confidence={result.confidence})",
                    raw=response[:500],
                )
        except Exception as e:
            log.warning(
                "reasoning.fallback",
                step_id=step.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return fallback_reasoning(step, e)

        log.info(
            "reasoning.complete",
            step_id=step.id,
            confidence=result.confidence,
            thoughts=len(result.thoughts),
            next_action=result.next_action[:80],
        )
        return result

    # ── Parsing ───────────────────────────────────────────────────────────────

    def _parse(self, response: str, step: TaskStep) -> ReasoningResult:
        data = tolerant_decode(response, required=_REQUIRED)

        raw_thoughts = data["thoughts"]
        if not isinstance(raw_thoughts, list) or not raw_thoughts:
            raise StructuredOutputError("'thoughts' must be a non-empty list", raw=response[:500])
        if isinstance(data["confidence"], bool) or not isinstance(data["confidence"], (int, float)):
            raise StructuredOutputError("'confidence' must be numeric", raw=response[:500])

        thoughts = [_to_thought(t) for t in raw_thoughts]
        next_action = str(data["nextAction"]).strip()
        reasoning = str(data["reasoning"]).strip()
        confidence = as_confidence(data["confidence"])

        thoughts.append(Thought(
            type=ThoughtType.DECISION,
            content=f"Next action: {next_action}",
            confidence=confidence,
            reasoning=reasoning,
        ))

        return ReasoningResult(
            thoughts=thoughts,
            next_action=next_action,
            confidence=confidence,
            reasoning=reasoning,
            alternatives=as_str_list(data["alternatives"]),
            metadata={
                "step_id": step.id,
                "risks": as_str_list(data.get("risks")),
                "expected_outcome": str(data.get("expectedOutcome") or ""),
                "is_fallback": False,
            },
        )


def _to_thought(raw: Any) -> Thought:
    if not isinstance(raw, dict):
        return Thought(type=ThoughtType.ANALYSIS, content=str(raw))
    try:
        kind = ThoughtType(str(raw.get("type", "analysis")).lower())
    except ValueError:
        kind = ThoughtType.ANALYSIS
    return Thought(
        type=kind,
        content=str(raw.get("content") or ""),
        confidence=as_confidence(raw.get("confidence"), default=0.5),
        reasoning=str(raw.get("reasoning") or ""),
    )


def fallback_reasoning(step: TaskStep, error: BaseException) -> ReasoningResult:
    return ReasoningResult(
        thoughts=[Thought(
            type=ThoughtType.ANALYSIS,
            content=f"Reasoning for step '{step.description}' failed: {error}",
            confidence=FALLBACK_CONFIDENCE,
            reasoning="The reasoning service was unavailable or returned unusable output.",
        )],
        next_action=FALLBACK_ACTION,
        confidence=FALLBACK_CONFIDENCE,
        reasoning="Fallback reasoning after a reasoning-service failure.",
        alternatives=list(FALLBACK_ALTERNATIVES),
        metadata={
            "step_id": step.id,
            "is_fallback": True,
            "error": str(error),
            "error_type": type(error).__name__,
        },
    )


def validate_reasoning_result(result: ReasoningResult) -> bool:
    """Success-path contract: confidence in [0.1, 1.0], non-empty action, reasoning and thoughts."""
    return (
        0.1 <= result.confidence <= 1.0
        and bool(result.next_action.strip())
        and bool(result.reasoning.strip())
        and len(result.thoughts) > 0
    )
