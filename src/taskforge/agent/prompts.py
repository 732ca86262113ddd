"""
agent/prompts.py - Prompt Builders

One builder per reasoning-service call. Each prompt ends with the JSON shape
the calling phase decodes; the phase never depends on anything else in the
wording.
"""

from __future__ import annotations

import json
from typing import Any, Sequence

from taskforge.agent.types import (
    ExecutionContext,
    HistoryEntry,
    StepStatus,
    TaskStep,
    ToolCallResult,
    ToolDescriptor,
)

# ── System prompts ────────────────────────────────────────────────────────────

PLANNER_SYSTEM = "You are a task analysis expert. Respond with a single JSON object."
REASONER_SYSTEM = (
    "You are the reasoning engine of an autonomous agent. Think step by step, "
    "then respond with a single JSON object."
)
ACTOR_SYSTEM = (
    "You turn an action description into concrete tool invocations. "
    "Only use the tools listed. Respond with a single JSON object."
)
OBSERVER_SYSTEM = (
    "You analyse tool results against an expected outcome. "
    "Respond with a single JSON object."
)
REFLECTOR_SYSTEM = (
    "You review an agent run and extract lessons and improvements. "
    "Respond with a single JSON object."
)
CONCLUSION_SYSTEM = (
    "You write the final conclusion of a task for the user. "
    "Respond strictly with a single JSON object."
)

_MAX_RESULT_CHARS = 4_000


def _clip(text: str, n: int) -> str:
    return text if len(text) <= n else text[: n - 1] + "…"


def _dump(value: Any, limit: int = _MAX_RESULT_CHARS) -> str:
    try:
        text = json.dumps(value, indent=2, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        text = str(value)
    return _clip(text, limit)


def _tool_lines(tools: Sequence[ToolDescriptor]) -> str:
    if not tools:
        return "(no tools available)"
    return "\n".join(
        f"- {t.name}: {t.description}\n  input schema: {json.dumps(t.input_schema)}"
        for t in tools
    )


# ── Builders ──────────────────────────────────────────────────────────────────


def task_analysis_prompt(task: str, goal: str, context: ExecutionContext) -> str:
    constraints = ", ".join(context.constraints) or "none"
    tools = ", ".join(context.tool_names) or "none"
    return f"""\
Analyse the task below and plan its execution.

## Task
Description: {task}
Goal: {goal}

## Resources
Available tools: {tools}
Constraints: {constraints}

Assess complexity, the number of steps needed, the tools each step needs,
key dependencies, risks and how success will be judged.

Respond with:
```json
{{
  "complexity": "high|medium|low",
  "estimatedSteps": 5,
  "requiredTools": ["tool_a"],
  "keyDependencies": ["..."],
  "riskPoints": ["..."],
  "successCriteria": ["..."],
  "executionStrategy": "how the task should be carried out",
  "steps": [{{"description": "...", "expectedOutcome": "..."}}]
}}
```"""


def reasoning_prompt(
    step: TaskStep,
    context: ExecutionContext,
    recent_history: Sequence[HistoryEntry],
) -> str:
    if recent_history:
        history = "\n".join(
            f"- {h.description} ({'succeeded' if h.success else 'failed'})"
            for h in recent_history
        )
    else:
        history = "(nothing executed yet)"
    return f"""\
Decide the next action for the current step.

## Current step
Description: {step.description}
Expected outcome: {step.expected_outcome or "not specified"}
Type: {step.type.value}

## Context
Task: {context.task}
Goal: {context.goal}
Available tools: {", ".join(context.tool_names) or "none"}

## Recent history
{history}

Analyse the situation, choose an action, weigh risks and alternatives, and
rate your confidence in the decision between 0 and 1.

Respond with:
```json
{{
  "thoughts": [
    {{"type": "analysis", "content": "...", "confidence": 0.8, "reasoning": "..."}}
  ],
  "nextAction": "concrete action to take",
  "confidence": 0.7,
  "reasoning": "why this action",
  "alternatives": ["..."],
  "risks": ["..."],
  "expectedOutcome": "..."
}}
```"""


def action_prompt(action: str, tools: Sequence[ToolDescriptor], context: ExecutionContext) -> str:
    return f"""\
Carry out the action below using the available tools.

## Action
{action}

## Task
{context.task}

## Available tools
{_tool_lines(tools)}

List the tool invocations needed, in execution order, with their inputs.

Respond with:
```json
{{
  "toolCalls": [
    {{"toolName": "name", "input": {{"param": "value"}}, "reasoning": "why"}}
  ],
  "executionPlan": "...",
  "expectedResults": "...",
  "fallbackPlan": "..."
}}
```"""


def observation_prompt(
    results: Sequence[ToolCallResult],
    expected_outcome: str,
    context: ExecutionContext,
) -> str:
    payload = [r.model_dump(exclude={"metadata"}) for r in results]
    return f"""\
Interpret the tool results below.

## Results
{_dump(payload)}

## Expected outcome
{expected_outcome or "not specified"}

## Goal
{context.goal}

Judge whether the results meet the expectation, what was learned, how it
affects the task and what should happen next. Report any problems.

Respond with:
```json
{{
  "observations": ["..."],
  "insights": ["..."],
  "implications": ["..."],
  "nextSteps": ["..."],
  "confidence": 0.8,
  "issues": [
    {{"type": "...", "description": "...", "severity": "high|medium|low", "suggestions": ["..."]}}
  ]
}}
```"""


def reflection_prompt(
    plan: Sequence[TaskStep],
    history: Sequence[HistoryEntry],
    context: ExecutionContext,
) -> str:
    completed = sum(1 for s in plan if s.status == StepStatus.COMPLETED)
    failed = sum(1 for s in plan if s.status == StepStatus.FAILED)
    lines = "\n".join(
        f"- {h.description} ({'succeeded' if h.success else 'failed'}) - {h.duration_ms:.0f}ms"
        for h in history
    ) or "(no executed steps)"
    return f"""\
Reflect on the run so far.

## Overview
Total steps: {len(plan)}
Completed: {completed}
Failed: {failed}
Task: {context.task}
Goal: {context.goal}

## History
{lines}

Respond with:
```json
{{
  "whatWorked": ["..."],
  "whatDidntWork": ["..."],
  "lessonsLearned": ["..."],
  "improvements": ["..."],
  "nextTimeStrategy": "...",
  "confidence": 0.8
}}
```"""


def conclusion_prompt(task: str, goal: str, report: dict[str, Any]) -> str:
    return f"""\
Write the conclusion of the task below for the user who requested it.

## Task
{task}

## Goal
{goal}

## Execution report
{_dump(report)}

Respond with:
```json
{{
  "taskCompletion": {{"isCompleted": true, "completionRate": 1.0, "successLevel": "high|medium|low"}},
  "mainResults": ["..."],
  "userResponse": "direct answer to the user",
  "resultExplanation": "...",
  "keyFindings": ["..."],
  "nextSteps": ["..."],
  "conclusion": "..."
}}
```"""
