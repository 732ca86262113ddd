"""
tests/unit/test_planner.py - plan creation and the default plan
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskforge.agent.planner import Planner, default_plan
from taskforge.agent.types import ExecutionContext, StepStatus, StepType, ToolDescriptor
from taskforge.config.settings import AgentConfig


def _make_reasoning(response):
    service = MagicMock()
    service.generate_text = AsyncMock(side_effect=[response])
    return service


def _make_context() -> ExecutionContext:
    return ExecutionContext(
        task="Write a changelog",
        goal="CHANGELOG.md updated",
        available_tools=[ToolDescriptor(name="file_write")],
    )


def _analysis(**overrides) -> str:
    payload = {
        "complexity": "simple",
        "estimatedSteps": 2,
        "requiredTools": ["file_write"],
        "executionStrategy": "gather then write",
        "steps": [
            {"type": "reasoning", "description": "Collect changes", "expectedOutcome": "A list of changes"},
            {"type": "action", "description": "Write the file", "expectedOutcome": "File written"},
        ],
    }
    payload.update(overrides)
    return json.dumps(payload)


@pytest.mark.asyncio
class TestCreatePlan:

    async def test_builds_steps_from_payload(self):
        planner = Planner(_make_reasoning(_analysis()), AgentConfig())
        steps = await planner.create_plan("Write a changelog", "CHANGELOG.md updated", _make_context())

        assert [s.description for s in steps] == ["Collect changes", "Write the file"]
        assert [s.type for s in steps] == [StepType.REASONING, StepType.ACTION]
        assert steps[1].expected_outcome == "File written"
        assert all(s.status == StepStatus.PENDING for s in steps)
        assert steps[0].metadata == {
            "step_number": 1,
            "complexity": "simple",
            "required_tools": ["file_write"],
        }

    async def test_steps_depend_on_the_previous_step(self):
        planner = Planner(_make_reasoning(_analysis(estimatedSteps=3)), AgentConfig())
        steps = await planner.create_plan("t", "g", _make_context())

        assert steps[0].dependencies == []
        assert steps[1].dependencies == [steps[0].id]
        assert steps[2].dependencies == [steps[1].id]
        # third step has no payload entry
        assert steps[2].description == "Step 3: analyse and execute"

    async def test_step_count_is_capped_by_max_steps(self):
        planner = Planner(_make_reasoning(_analysis(estimatedSteps=50)), AgentConfig(max_steps=4))
        steps = await planner.create_plan("t", "g", _make_context())
        assert len(steps) == 4

    async def test_unknown_step_type_becomes_reasoning(self):
        response = _analysis(estimatedSteps=1, steps=[{"type": "dance", "description": "x"}])
        planner = Planner(_make_reasoning(response), AgentConfig())
        steps = await planner.create_plan("t", "g", _make_context())
        assert steps[0].type == StepType.REASONING

    async def test_missing_strategy_falls_back_to_default_plan(self):
        response = json.dumps({"estimatedSteps": 2})
        planner = Planner(_make_reasoning(response), AgentConfig())
        steps = await planner.create_plan("t", "g", _make_context())
        assert [s.description for s in steps] == [s.description for s in default_plan()]

    async def test_service_failure_falls_back_to_default_plan(self):
        planner = Planner(_make_reasoning(TimeoutError("slow")), AgentConfig())
        steps = await planner.create_plan("t", "g", _make_context())
        assert len(steps) == 3


class TestDefaultPlan:
    def test_shape(self):
        plan = default_plan()
        assert [s.type for s in plan] == [StepType.REASONING, StepType.ACTION, StepType.REFLECTION]
        assert [s.description for s in plan] == [
            "Analyze task requirements",
            "Execute task operations",
            "Verify task completion",
        ]

    def test_fresh_ids_each_time(self):
        assert default_plan()[0].id != default_plan()[0].id
