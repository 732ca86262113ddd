"""
agent/actor.py - Acting Phase

Two stages per action:

  1. Ask the reasoning service to turn the action description and the tool
     catalogue into an ordered list of {toolName, input, reasoning}.
  2. Invoke each tool strictly in order, each call timed on its own.

A failing call yields ToolCallResult(success=False, error=...) and the rest
of the batch still runs. If stage 1 fails the phase returns a single
synthetic failed result attributed to "action_executor".
"""

from __future__ import annotations

import time
from typing import Any, Optional, Sequence

from taskforge.agent import prompts
from taskforge.agent.decoding import tolerant_decode
from taskforge.agent.interfaces import GenerateOptions, ReasoningService, ToolCatalog
from taskforge.agent.types import (
    ExecutionContext,
    ExecutionStats,
    TaskStep,
    ToolCallResult,
)
from taskforge.config.settings import AgentConfig
from taskforge.exceptions import StructuredOutputError
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

SYNTHETIC_TOOL_NAME = "action_executor"


class PlannedCall:
    def __init__(self, tool_name: str, input: dict[str, Any], reasoning: str = ""):
        self.tool_name = tool_name
        self.input = input
        self.reasoning = reasoning

    def __repr__(self) -> str:
        return f"<PlannedCall {self.tool_name}>"


class ActingPhase:

    def __init__(self, reasoning: ReasoningService, tools: ToolCatalog, config: AgentConfig):
        self._reasoning = reasoning
        self._tools = tools
        self._config = config

    def update_config(self, config: AgentConfig) -> None:
        self._config = config

    async def execute_action(
        self,
        action: str,
        context: ExecutionContext,
        step: TaskStep,
    ) -> list[ToolCallResult]:
        try:
            calls = await self._plan_calls(action, context)
        except Exception as e:
            log.warning(
                "acting.plan_failed",
                step_id=step.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return [ToolCallResult(
                tool_name=SYNTHETIC_TOOL_NAME,
                input={"action": action},
                success=False,
                error=f"Could not plan tool calls: {e}",
                metadata={"step_id": step.id, "planning_failed": True, "retry_count": 0},
            )]

        log.info("acting.plan_ready", step_id=step.id, calls=[c.tool_name for c in calls])

        results: list[ToolCallResult] = []
        for call in calls:
            result = await self._invoke(
                call.tool_name,
                call.input,
                metadata={"step_id": step.id, "reasoning": call.reasoning, "retry_count": 0},
            )
            results.append(result)
        return results

    async def retry_failed_tools(
        self,
        failed: Sequence[ToolCallResult],
        max_retries: int = 3,
    ) -> list[ToolCallResult]:
        """
        Re-run the failed results once more each. A result whose retry_count
        already reached max_retries, or that succeeded, is returned unchanged.
        """
        out: list[ToolCallResult] = []
        for previous in failed:
            if previous.success:
                out.append(previous)
                continue
            if previous.retry_count >= max_retries:
                log.info("acting.retry_exhausted", tool=previous.tool_name, retries=previous.retry_count)
                out.append(previous)
                continue

            metadata = dict(previous.metadata)
            metadata["retry_count"] = previous.retry_count + 1
            metadata["is_retry"] = True
            out.append(await self._invoke(previous.tool_name, previous.input, metadata=metadata))
        return out

    def execution_stats(self, results: Sequence[ToolCallResult]) -> ExecutionStats:
        return execution_stats(results)

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _plan_calls(self, action: str, context: ExecutionContext) -> list[PlannedCall]:
        config = self._config
        options = GenerateOptions(
            model=config.action_model,
            temperature=0.2,
            max_tokens=2048,
            system_prompt=prompts.ACTOR_SYSTEM,
        )
        response = await self._reasoning.generate_text(
            prompts.action_prompt(action, context.available_tools, context), options
        )
        data = tolerant_decode(response, required=("toolCalls",))

        raw_calls = data["toolCalls"]
        if not isinstance(raw_calls, list):
            raise StructuredOutputError("'toolCalls' must be a list", raw=response[:500])

        calls: list[PlannedCall] = []
        for i, raw in enumerate(raw_calls):
            if not isinstance(raw, dict) or not str(raw.get("toolName") or "").strip():
                raise StructuredOutputError(f"toolCalls[{i}] has no toolName", raw=response[:500])
            tool_input = raw.get("input") or {}
            if not isinstance(tool_input, dict):
                raise StructuredOutputError(f"toolCalls[{i}].input must be an object", raw=response[:500])
            calls.append(PlannedCall(
                tool_name=str(raw["toolName"]).strip(),
                input=tool_input,
                reasoning=str(raw.get("reasoning") or ""),
            ))
        return calls

    async def _invoke(
        self,
        name: str,
        tool_input: dict[str, Any],
        metadata: dict[str, Any],
    ) -> ToolCallResult:
        start = time.monotonic()
        error: Optional[str] = None
        output: Any = None
        try:
            outcome = await self._tools.invoke(name, tool_input)
            output = outcome.output
            error = outcome.error
        except Exception as e:
            error = f"{type(e).__name__}: {e}"

        elapsed_ms = round((time.monotonic() - start) * 1000, 1)
        metadata = {**metadata, "timestamp": time.time()}

        if error:
            log.warning("acting.tool_failed", tool=name, error=error, duration_ms=elapsed_ms)
            return ToolCallResult(
                tool_name=name,
                input=tool_input,
                output=output,
                success=False,
                error=error,
                execution_time_ms=elapsed_ms,
                metadata=metadata,
            )

        log.info("acting.tool_succeeded", tool=name, duration_ms=elapsed_ms)
        return ToolCallResult(
            tool_name=name,
            input=tool_input,
            output=output,
            success=True,
            execution_time_ms=elapsed_ms,
            metadata=metadata,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def execution_stats(results: Sequence[ToolCallResult]) -> ExecutionStats:
    total = len(results)
    if total == 0:
        return ExecutionStats()
    successful = sum(1 for r in results if r.success)
    total_ms = sum(r.execution_time_ms for r in results)
    fastest = min(results, key=lambda r: r.execution_time_ms)
    slowest = max(results, key=lambda r: r.execution_time_ms)
    return ExecutionStats(
        total=total,
        successful=successful,
        failed=total - successful,
        success_rate=successful / total,
        total_execution_time_ms=round(total_ms, 1),
        average_execution_time_ms=round(total_ms / total, 1),
        fastest=fastest.tool_name,
        slowest=slowest.tool_name,
        max_execution_time_ms=slowest.execution_time_ms,
    )


def validate_tool_call_results(results: Sequence[ToolCallResult]) -> bool:
    """False for an empty batch or one in which every call failed."""
    if not results:
        log.warning("acting.no_results")
        return False
    if not any(r.success for r in results):
        log.warning("acting.all_failed", total=len(results))
        return False
    return True
