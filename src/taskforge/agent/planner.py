"""
agent/planner.py - Task Planner

Turns task + goal into the ordered step list the engine walks. The plan is
never empty: any service or parse failure substitutes the default
three-step plan (analyse, execute, verify).
"""

from __future__ import annotations

from typing import Any

from taskforge.agent import prompts
from taskforge.agent.decoding import as_str_list, tolerant_decode
from taskforge.agent.interfaces import GenerateOptions, ReasoningService
from taskforge.agent.types import ExecutionContext, StepType, TaskStep
from taskforge.config.settings import AgentConfig
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

_REQUIRED = ("estimatedSteps", "executionStrategy")


class Planner:
    """Uses the reasoning service to decompose a task into steps."""

    def __init__(self, reasoning: ReasoningService, config: AgentConfig):
        self._reasoning = reasoning
        self._config = config

    def update_config(self, config: AgentConfig) -> None:
        self._config = config

    async def create_plan(self, task: str, goal: str, context: ExecutionContext) -> list[TaskStep]:
        config = self._config
        options = GenerateOptions(
            model=config.reasoning_model,
            temperature=0.3,
            max_tokens=2048,
            system_prompt=prompts.PLANNER_SYSTEM,
        )
        log.info("planner.create_plan", task=task[:80], tools=len(context.available_tools))
        try:
            response = await self._reasoning.generate_text(
                prompts.task_analysis_prompt(task, goal, context), options
            )
            analysis = tolerant_decode(response, required=_REQUIRED)
            steps = self._build_steps(analysis, config.max_steps)
        except Exception as e:
            log.warning("planner.create_plan_failed", error=str(e), error_type=type(e).__name__)
            return default_plan()

        log.info("planner.plan_ready", steps=len(steps), strategy=str(analysis["executionStrategy"])[:80])
        return steps

    # ── Builders ──────────────────────────────────────────────────────────────

    def _build_steps(self, analysis: dict[str, Any], max_steps: int) -> list[TaskStep]:
        try:
            estimated = int(analysis.get("estimatedSteps") or 5)
        except (TypeError, ValueError):
            estimated = 5
        count = max(1, min(estimated, max_steps))

        entries = analysis.get("steps")
        entries = entries if isinstance(entries, list) else []
        complexity = str(analysis.get("complexity") or "medium")
        required_tools = as_str_list(analysis.get("requiredTools"))

        steps: list[TaskStep] = []
        for i in range(count):
            entry = entries[i] if i < len(entries) and isinstance(entries[i], dict) else {}
            step = TaskStep(
                type=_step_type(entry.get("type")),
                description=str(entry.get("description") or f"Step {i + 1}: analyse and execute"),
                expected_outcome=str(
                    entry.get("expectedOutcome") or f"Objective of step {i + 1} is met"
                ),
                dependencies=[steps[-1].id] if steps else [],
                metadata={
                    "step_number": i + 1,
                    "complexity": complexity,
                    "required_tools": required_tools,
                },
            )
            steps.append(step)
        return steps


def _step_type(value: Any) -> StepType:
    try:
        return StepType(str(value).lower())
    except ValueError:
        return StepType.REASONING


def default_plan() -> list[TaskStep]:
    """The fallback plan used whenever planning fails."""
    return [
        TaskStep(
            type=StepType.REASONING,
            description="Analyze task requirements",
            expected_outcome="Task requirements and constraints are understood",
            metadata={"step_number": 1},
        ),
        TaskStep(
            type=StepType.ACTION,
            description="Execute task operations",
            expected_outcome="The main objective of the task is achieved",
            metadata={"step_number": 2},
        ),
        TaskStep(
            type=StepType.REFLECTION,
            description="Verify task completion",
            expected_outcome="Goal achievement is confirmed",
            metadata={"step_number": 3},
        ),
    ]
