"""
agent/synthesizer.py - Result Synthesizer

Aggregates a finished plan + history into the terminal ExecutionResult:

  - success  = status is completed AND at least one step completed
  - summary  = Markdown report built from local step counters and timing
  - recommendations = heuristics over error count, incompleteness, reflection
  - task_conclusion = structured conclusion requested from the reasoning
    service; on any failure a deterministic conclusion is built from the
    local counters instead

Also home of build_result_message() (what gets persisted to the
conversation) and failed_execution_result() (the generic failure result).
"""

from __future__ import annotations

import time
from typing import Any, Optional

from taskforge.agent import prompts
from taskforge.agent.decoding import tolerant_decode
from taskforge.agent.interfaces import GenerateOptions, ReasoningService
from taskforge.agent.types import (
    AgentError,
    AgentState,
    AgentStatus,
    ErrorType,
    ExecutionResult,
    ObservationResult,
    StepStatus,
)
from taskforge.config.settings import AgentConfig
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

_CONCLUSION_REQUIRED = ("taskCompletion", "userResponse", "conclusion")

FAILURE_SUGGESTIONS = [
    "Check the task description",
    "Verify that the required tools are available",
    "Retry the task",
]


class ResultSynthesizer:

    def __init__(self, reasoning: ReasoningService, config: AgentConfig):
        self._reasoning = reasoning
        self._config = config

    def update_config(self, config: AgentConfig) -> None:
        self._config = config

    async def synthesize(
        self,
        state: AgentState,
        final_observation: Optional[ObservationResult],
    ) -> ExecutionResult:
        elapsed_ms = round((time.time() - state.start_time) * 1000, 1)
        completed = state.count(StepStatus.COMPLETED)
        success = state.status == AgentStatus.COMPLETED and completed > 0

        summary = build_summary(state, elapsed_ms)
        recommendations = build_recommendations(state)
        conclusion = await self._conclude(state, summary, recommendations, elapsed_ms)

        log.info(
            "synthesizer.result",
            success=success,
            completed_steps=completed,
            total_steps=len(state.plan),
            error_count=state.error_count,
        )
        return ExecutionResult(
            success=success,
            result=final_observation,
            summary=summary,
            task_conclusion=conclusion,
            steps=[s.model_copy(deep=True) for s in state.plan],
            history=list(state.history),
            execution_time_ms=elapsed_ms,
            error_count=state.error_count,
            confidence=state.confidence,
            recommendations=recommendations,
            metadata={
                "agent_id": state.id,
                "final_status": state.status.value,
                "completed_steps": completed,
                "total_steps": len(state.plan),
                "timestamp": time.time(),
            },
        )

    async def _conclude(
        self,
        state: AgentState,
        summary: str,
        recommendations: list[str],
        elapsed_ms: float,
    ) -> dict[str, Any]:
        report = {
            "summary": summary,
            "steps": [
                {"description": s.description, "status": s.status.value, "error": s.error}
                for s in state.plan
            ],
            "history": [
                {"description": h.description, "observations": h.observation.observations}
                for h in state.history
            ],
            "execution_time_ms": elapsed_ms,
            "confidence": state.confidence,
            "recommendations": recommendations,
        }
        options = GenerateOptions(
            model=self._config.reasoning_model,
            temperature=0.3,
            max_tokens=2048,
            system_prompt=prompts.CONCLUSION_SYSTEM,
        )
        try:
            response = await self._reasoning.generate_text(
                prompts.conclusion_prompt(state.task, state.goal, report), options
            )
            return tolerant_decode(response, required=_CONCLUSION_REQUIRED)
        except Exception as e:
            log.warning("synthesizer.conclusion_fallback", error=str(e), error_type=type(e).__name__)
            return fallback_conclusion(state, summary, recommendations)


# ─────────────────────────────────────────────────────────────────────────────
# Local builders
# ─────────────────────────────────────────────────────────────────────────────


def build_summary(state: AgentState, elapsed_ms: float) -> str:
    total = len(state.plan)
    if state.status == AgentStatus.COMPLETED:
        outcome = "Task completed successfully"
    elif state.status == AgentStatus.FAILED:
        outcome = "Task failed"
    else:
        outcome = "Task partially completed"

    return (
        "## Task Execution Summary\n\n"
        f"**Task**: {state.task}\n"
        f"**Goal**: {state.goal}\n\n"
        "**Statistics**:\n"
        f"- Total steps: {total}\n"
        f"- Completed: {state.count(StepStatus.COMPLETED)}\n"
        f"- Failed: {state.count(StepStatus.FAILED)}\n"
        f"- Skipped: {state.count(StepStatus.SKIPPED)}\n"
        f"- Execution time: {elapsed_ms / 1000:.2f}s\n\n"
        f"**Result**: {outcome}\n"
    )


def build_recommendations(state: AgentState) -> list[str]:
    recommendations: list[str] = []
    if state.error_count > 0:
        recommendations.append("Check tool configuration and permissions")
        recommendations.append("Verify the input parameters")
    if state.count(StepStatus.COMPLETED) < len(state.plan):
        recommendations.append("Re-run the unfinished steps")
        recommendations.append("Review the task decomposition")
    if state.metadata.get("reflection") is not None:
        recommendations.append("Apply the reflection findings to the next run")
    return recommendations


def fallback_conclusion(
    state: AgentState,
    summary: str,
    recommendations: list[str],
) -> dict[str, Any]:
    total = len(state.plan)
    completed = state.count(StepStatus.COMPLETED)
    is_completed = state.status == AgentStatus.COMPLETED
    return {
        "task_completion": {
            "is_completed": is_completed,
            "completion_rate": completed / total if total else 0.0,
            "success_level": "high" if is_completed else "low",
        },
        "main_results": ["Task execution finished"],
        "user_response": f"Finished task: {state.task}",
        "result_explanation": summary,
        "key_findings": [],
        "next_steps": list(recommendations),
        "conclusion": summary,
    }


def build_result_message(result: ExecutionResult) -> str:
    """Human-readable text persisted to the conversation."""
    message = result.summary
    if result.recommendations:
        message += "\n\n**Recommendations**:\n"
        message += "".join(f"{i}. {rec}\n" for i, rec in enumerate(result.recommendations, 1))
    if result.execution_time_ms > 0:
        message += f"\n\n**Execution time**: {result.execution_time_ms / 1000:.2f}s"
    return message


def failed_execution_result(details: str, metadata: Optional[dict[str, Any]] = None) -> ExecutionResult:
    """The generic failure result for a run that crashed outside the step loop."""
    error = AgentError(
        type=ErrorType.EXECUTION_ERROR,
        message="An error occurred while executing the task",
        details=details,
        recoverable=False,
        suggestions=list(FAILURE_SUGGESTIONS),
    )
    return ExecutionResult(
        success=False,
        result=None,
        summary="Task execution failed",
        error_count=1,
        confidence=0.0,
        recommendations=list(FAILURE_SUGGESTIONS),
        metadata={**(metadata or {}), "error": error.model_dump(mode="json")},
    )
