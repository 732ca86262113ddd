"""
agent/observer.py - Observing Phase

Interprets a batch of ToolCallResults against the step's expected outcome.

The reasoning service supplies observations, insights, implications, next
steps and issues. Statistics, key findings and improvement suggestions are
always computed locally from the batch, so they are present even when the
service call fails and the phase falls back (confidence 0.3, is_fallback).
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from taskforge.agent import prompts
from taskforge.agent.actor import execution_stats
from taskforge.agent.decoding import as_confidence, as_str_list, tolerant_decode
from taskforge.agent.interfaces import GenerateOptions, ReasoningService
from taskforge.agent.types import (
    ExecutionContext,
    ExecutionStats,
    ObservationIssue,
    ObservationResult,
    TaskStep,
    ToolCallResult,
)
from taskforge.config.settings import AgentConfig
from taskforge.exceptions import StructuredOutputError
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

FALLBACK_CONFIDENCE = 0.3
SLOW_CALL_MS = 5000.0


class ObservingPhase:

    def __init__(self, reasoning: ReasoningService, config: AgentConfig):
        self._reasoning = reasoning
        self._config = config

    def update_config(self, config: AgentConfig) -> None:
        self._config = config

    async def observe(
        self,
        results: Sequence[ToolCallResult],
        expected_outcome: str,
        context: ExecutionContext,
        step: TaskStep,
    ) -> ObservationResult:
        config = self._config
        stats = execution_stats(results)
        findings = key_findings(results, stats)

        options = GenerateOptions(
            model=config.reasoning_model,
            temperature=0.4,
            max_tokens=2048,
            system_prompt=prompts.OBSERVER_SYSTEM,
        )
        try:
            response = await self._reasoning.generate_text(
                prompts.observation_prompt(results, expected_outcome, context), options
            )
            data = tolerant_decode(response, required=("observations",))
            observations = as_str_list(data["observations"])
            if not observations:
                raise StructuredOutputError("'observations' must be a non-empty list", raw=response[:500])
        except Exception as e:
            log.warning(
                "observing.fallback",
                step_id=step.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return fallback_observation(results, stats, findings, step, e)

        issues = _parse_issues(data.get("issues"))
        result = ObservationResult(
            observations=observations,
            insights=as_str_list(data.get("insights")),
            implications=as_str_list(data.get("implications")),
            next_steps=as_str_list(data.get("nextSteps")),
            confidence=as_confidence(data.get("confidence")),
            issues=issues,
            execution_stats=stats,
            key_findings=findings,
            improvements=improvement_suggestions(results, issues),
            metadata={"step_id": step.id, "is_fallback": False},
        )
        log.info(
            "observing.complete",
            step_id=step.id,
            confidence=result.confidence,
            success_rate=stats.success_rate,
            issues=len(issues),
        )
        return result


# ─────────────────────────────────────────────────────────────────────────────
# Local analysis
# ─────────────────────────────────────────────────────────────────────────────


def key_findings(results: Sequence[ToolCallResult], stats: Optional[ExecutionStats] = None) -> list[str]:
    if not results:
        return ["No tool calls were executed"]
    stats = stats or execution_stats(results)
    findings = [f"Tools used: {', '.join(_unique(r.tool_name for r in results))}"]
    if stats.failed:
        findings.append(f"{stats.failed} tool call(s) failed")
        kinds = _unique(_error_kind(r.error) for r in results if not r.success and r.error)
        if kinds:
            findings.append(f"Error types: {', '.join(kinds)}")
    findings.append(f"Average execution time: {stats.average_execution_time_ms:.0f}ms")
    return findings


def improvement_suggestions(
    results: Sequence[ToolCallResult],
    issues: Sequence[ObservationIssue] = (),
) -> list[str]:
    suggestions: list[str] = []
    if any(not r.success for r in results):
        suggestions.append("Retry the failed tool calls")
        suggestions.append("Check the input parameters of the failed tools")
    if any(r.execution_time_ms > SLOW_CALL_MS for r in results):
        suggestions.append("Optimize the slow tool calls")
        suggestions.append("Consider running independent tool calls in parallel")
    for issue in issues:
        suggestions.extend(issue.suggestions)
    return _unique(suggestions)


def fallback_observation(
    results: Sequence[ToolCallResult],
    stats: ExecutionStats,
    findings: list[str],
    step: TaskStep,
    error: BaseException,
) -> ObservationResult:
    observations = [f"{stats.successful}/{stats.total} tool call(s) succeeded"]
    observations.extend(
        f"{r.tool_name} failed: {r.error}" for r in results if not r.success and r.error
    )
    return ObservationResult(
        observations=observations,
        insights=list(findings),
        implications=["Observation analysis was unavailable; results were summarised locally"],
        next_steps=["Continue with the next step" if stats.failed == 0 else "Review the failed tool calls"],
        confidence=FALLBACK_CONFIDENCE,
        execution_stats=stats,
        key_findings=list(findings),
        improvements=improvement_suggestions(results),
        metadata={
            "step_id": step.id,
            "is_fallback": True,
            "error": str(error),
            "error_type": type(error).__name__,
        },
    )


def merge_observation_results(results: Sequence[ObservationResult]) -> ObservationResult:
    """De-duplicate the string lists of several observations and average their confidence."""
    if not results:
        raise ValueError("merge_observation_results() needs at least one result")
    if len(results) == 1:
        return results[0]

    issues: list[ObservationIssue] = []
    for r in results:
        issues.extend(r.issues)

    return ObservationResult(
        observations=_unique(o for r in results for o in r.observations),
        insights=_unique(i for r in results for i in r.insights),
        implications=_unique(i for r in results for i in r.implications),
        next_steps=_unique(s for r in results for s in r.next_steps),
        confidence=sum(r.confidence for r in results) / len(results),
        issues=issues,
        key_findings=_unique(f for r in results for f in r.key_findings),
        improvements=_unique(i for r in results for i in r.improvements),
        metadata={"merged_from": len(results)},
    )


def validate_observation_result(result: ObservationResult) -> bool:
    return (
        0.1 <= result.confidence <= 1.0
        and len(result.observations) > 0
        and len(result.insights) > 0
    )


def _parse_issues(raw) -> list[ObservationIssue]:
    if not isinstance(raw, list):
        return []
    issues = []
    for item in raw:
        if isinstance(item, dict):
            issues.append(ObservationIssue(
                type=str(item.get("type") or "general"),
                description=str(item.get("description") or ""),
                severity=str(item.get("severity") or "medium").lower(),
                suggestions=as_str_list(item.get("suggestions")),
            ))
        elif isinstance(item, str) and item.strip():
            issues.append(ObservationIssue(description=item.strip()))
    return issues


def _error_kind(error: str) -> str:
    head = error.split(":", 1)[0].strip()
    return head[:60] or "unknown"


def _unique(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
