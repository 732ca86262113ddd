"""
agent/engine.py - AgentEngine

Drives one task through the ReAct loop:

    planning → for each step: reasoning → (acting → observing) → advance
             → completed | failed | paused

Per step:
  1. Mark the step running and emit step_start.
  2. ReasoningPhase proposes the next action with a confidence.
  3. Confidence >= threshold and an action was proposed:
       acting → observing → HistoryEntry appended → step completed.
     Otherwise the step is skipped (no HistoryEntry).
  4. Trouble signalled by the observation spawns a detached reflection.
  5. Emit step_complete and advance.

Any exception inside a step fails it, increments error_count and emits
step_error. While error_count <= max_retries the SAME step is re-run; past
that the run fails. stop() is cooperative and observed at step boundaries.

The engine is the only writer of its AgentState. Reflections run in the
background and are harvested into state.metadata["reflection"] by the loop.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

from taskforge.agent.actor import ActingPhase, validate_tool_call_results
from taskforge.agent.background import BackgroundTasks
from taskforge.agent.events import EventKind, EventStream
from taskforge.agent.interfaces import ReasoningService, ToolCatalog
from taskforge.agent.observer import ObservingPhase
from taskforge.agent.planner import Planner
from taskforge.agent.reasoner import ReasoningPhase
from taskforge.agent.reflector import ReflectionPhase, should_reflect
from taskforge.agent.synthesizer import ResultSynthesizer, failed_execution_result
from taskforge.agent.types import (
    AgentError,
    AgentState,
    AgentStatus,
    ErrorType,
    ExecutionContext,
    ExecutionResult,
    HistoryEntry,
    ObservationResult,
    ProgressEvent,
    ProgressEventType,
    ReflectionResult,
    StepStatus,
    TaskStep,
)
from taskforge.config.settings import AgentConfig
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

_TERMINAL = (AgentStatus.COMPLETED, AgentStatus.FAILED, AgentStatus.PAUSED)


class AgentEngine:
    """
    One engine per session. Owns its AgentState, its own copy of the
    AgentConfig and its own phase instances; only the reasoning service and
    the tool catalogue are shared.
    """

    def __init__(
        self,
        reasoning: ReasoningService,
        tools: ToolCatalog,
        config: AgentConfig,
        events: Optional[EventStream] = None,
    ):
        self._config = config.model_copy(deep=True)
        self._events = events

        self._planner = Planner(reasoning, self._config)
        self._reasoner = ReasoningPhase(reasoning, self._config)
        self._actor = ActingPhase(reasoning, tools, self._config)
        self._observer = ObservingPhase(reasoning, self._config)
        self._reflector = ReflectionPhase(reasoning, self._config)
        self._synthesizer = ResultSynthesizer(reasoning, self._config)

        self._background = BackgroundTasks(owner="engine")
        self._reflections: list[asyncio.Task] = []
        self._state: Optional[AgentState] = None
        self._stop_requested = False

    # ── Public API ────────────────────────────────────────────────────────────

    @property
    def state(self) -> Optional[AgentState]:
        return self._state

    @property
    def config(self) -> AgentConfig:
        return self._config.model_copy(deep=True)

    def stop(self) -> None:
        """Request a cooperative stop. Takes effect at the next step boundary."""
        self._stop_requested = True
        state = self._state
        if state is not None and state.status not in (AgentStatus.COMPLETED, AgentStatus.FAILED):
            state.status = AgentStatus.PAUSED
        log.info("engine.stop_requested", agent_id=state.id if state else None)

    def update_config(self, **changes: Any) -> AgentConfig:
        """
        Merge partial changes into the config and push it to every phase.

        Validation happens before anything is replaced, so an invalid change
        leaves the engine untouched. A step already in flight keeps the
        config it started with.
        """
        unknown = sorted(set(changes) - set(AgentConfig.model_fields))
        if unknown:
            raise ValueError(f"Unknown agent config keys: {unknown}")
        new_config = AgentConfig.model_validate({**self._config.model_dump(), **changes})
        self._config = new_config
        for phase in (self._planner, self._reasoner, self._actor,
                      self._observer, self._reflector, self._synthesizer):
            phase.update_config(new_config)
        log.info("engine.config_updated", changes=sorted(changes))
        return new_config.model_copy(deep=True)

    async def execute_task(self, task: str, goal: str, context: ExecutionContext) -> ExecutionResult:
        state = AgentState(task=task, goal=goal, context=context)
        self._state = state
        if self._stop_requested:
            state.status = AgentStatus.PAUSED
        log.info("engine.execute_task", agent_id=state.id, task=task[:80])

        self._set_status(AgentStatus.PLANNING, "Creating execution plan")
        plan = await self._planner.create_plan(task, goal, context)
        state.plan = plan
        state.total_steps = len(plan)
        self._emit(
            ProgressEventType.PROGRESS_UPDATE,
            f"Plan created with {len(plan)} steps",
            data={"steps": [s.description for s in plan]},
        )

        final_observation = await self._run_steps(state)

        if state.status not in (AgentStatus.FAILED, AgentStatus.PAUSED):
            state.status = AgentStatus.COMPLETED
        state.progress = 100.0
        state.last_update_time = time.time()
        self._emit(
            ProgressEventType.STATUS_CHANGE,
            f"Task {state.status.value}",
            data={"error_count": state.error_count, "retry_count": state.retry_count},
        )
        log.info(
            "engine.loop_finished",
            agent_id=state.id,
            status=state.status.value,
            completed=state.count(StepStatus.COMPLETED),
            skipped=state.count(StepStatus.SKIPPED),
            error_count=state.error_count,
        )

        if state.status == AgentStatus.PAUSED:
            self._background.cancel_all()
            return stopped_result(state, final_observation)

        await self._background.drain()
        self._harvest_reflections(state)

        try:
            return await self._synthesizer.synthesize(state, final_observation)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("engine.synthesis_failed", agent_id=state.id, error=str(e), error_type=type(e).__name__)
            return failed_execution_result(
                str(e),
                metadata={"agent_id": state.id, "final_status": state.status.value},
            )

    # ── Step loop ─────────────────────────────────────────────────────────────

    async def _run_steps(self, state: AgentState) -> Optional[ObservationResult]:
        final_observation: Optional[ObservationResult] = None
        index = 0
        while index < len(state.plan):
            if state.status == AgentStatus.PAUSED:
                log.info("engine.paused", agent_id=state.id, at_step=index)
                break
            self._harvest_reflections(state)

            step = state.plan[index]
            if step.is_finished:
                # failure raised after the step had already finished
                self._advance(state)
                self._emit_step_complete(step)
                index += 1
                continue
            try:
                observation = await self._execute_step(state, step, index)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if step.status == StepStatus.RUNNING:
                    step.fail(str(e))
                state.error_count += 1
                self._advance(state)
                retrying = state.error_count <= self._config.max_retries
                log.warning(
                    "engine.step_failed",
                    agent_id=state.id,
                    step_id=step.id,
                    error=str(e),
                    error_type=type(e).__name__,
                    error_count=state.error_count,
                    retrying=retrying,
                )
                self._emit(
                    ProgressEventType.STEP_ERROR,
                    f"Step failed: {e}",
                    step_id=step.id,
                    data={"error": str(e), "error_count": state.error_count,
                          "attempt": step.metadata.get("attempts", 1)},
                )
                self._emit_error(AgentError(
                    type=ErrorType.EXECUTION_ERROR,
                    message=f"Step '{step.description}' failed",
                    details=str(e),
                    step_id=step.id,
                    recoverable=retrying,
                    suggestions=["Retrying the step"] if retrying else ["Check the task and tool setup"],
                ))
                if not retrying:
                    state.status = AgentStatus.FAILED
                    break
                state.retry_count += 1
                continue

            if observation is not None:
                final_observation = observation
            index += 1
        return final_observation

    async def _execute_step(self, state: AgentState, step: TaskStep, index: int) -> Optional[ObservationResult]:
        config = self._config
        context = state.context

        step.start()
        if not self._stop_requested:
            state.status = AgentStatus.REASONING
        self._emit(
            ProgressEventType.STEP_START,
            step.description,
            step_id=step.id,
            data={"step_number": index + 1, "type": step.type.value,
                  "attempt": step.metadata.get("attempts", 1)},
        )

        reasoning = await self._reasoner.reason(step, context, state.history)
        step.thoughts.extend(reasoning.thoughts)
        state.confidence = reasoning.confidence

        observation: Optional[ObservationResult] = None
        if reasoning.confidence >= config.confidence_threshold and reasoning.next_action.strip():
            self._set_status(AgentStatus.ACTING, f"Executing: {reasoning.next_action[:80]}")
            results = await self._actor.execute_action(reasoning.next_action, context, step)

            self._set_status(AgentStatus.OBSERVING, "Analysing results")
            observation = await self._observer.observe(results, step.expected_outcome, context, step)

            state.history.append(HistoryEntry(
                step_id=step.id,
                type=step.type,
                description=step.description,
                reasoning=reasoning,
                actions=tuple(results),
                observation=observation,
                success=validate_tool_call_results(results),
                duration_ms=round((time.time() - (step.start_time or time.time())) * 1000, 1),
                thoughts=tuple(step.thoughts),
            ))
            step.complete({
                "action": reasoning.next_action,
                "observations": observation.observations,
                "confidence": observation.confidence,
                "tool_calls": len(results),
            })

            if config.enable_reflection and should_reflect(observation):
                self._spawn_reflection(state, step)
        else:
            log.info(
                "engine.step_skipped",
                agent_id=state.id,
                step_id=step.id,
                confidence=reasoning.confidence,
                threshold=config.confidence_threshold,
            )
            step.skip({"reason": "low confidence", "confidence": reasoning.confidence})

        self._advance(state)
        self._emit_step_complete(step, confidence=reasoning.confidence)
        return observation

    def _advance(self, state: AgentState) -> None:
        # current_step counts every step that has left PENDING, failed ones included
        state.current_step = sum(1 for s in state.plan if s.status != StepStatus.PENDING)
        state.progress = round(state.current_step / max(state.total_steps, 1) * 100, 1)
        state.last_update_time = time.time()

    def _emit_step_complete(self, step: TaskStep, confidence: Optional[float] = None) -> None:
        state = self._state
        self._emit(
            ProgressEventType.STEP_COMPLETE,
            f"Step {step.status.value}: {step.description}",
            step_id=step.id,
            data={"step_status": step.status.value, "confidence": confidence,
                  "history_length": len(state.history) if state else 0},
        )

    # ── Reflection side-channel ───────────────────────────────────────────────

    def _spawn_reflection(self, state: AgentState, step: TaskStep) -> None:
        plan = [s.model_copy(deep=True) for s in state.plan]
        history = list(state.history)
        task = self._background.spawn(
            self._reflector.reflect(plan, history, state.context),
            name=f"reflect:{step.id}",
        )
        self._reflections.append(task)
        log.debug("engine.reflection_spawned", agent_id=state.id, step_id=step.id)

    def _harvest_reflections(self, state: AgentState) -> None:
        pending: list[asyncio.Task] = []
        for task in self._reflections:
            if not task.done():
                pending.append(task)
                continue
            if task.cancelled() or task.exception() is not None:
                continue
            result = task.result()
            if isinstance(result, ReflectionResult):
                state.metadata["reflection"] = result
        self._reflections = pending

    # ── Status + events ───────────────────────────────────────────────────────

    def _set_status(self, status: AgentStatus, message: str) -> None:
        state = self._state
        if state is None:
            return
        # A stop request wins over every non-terminal transition.
        if self._stop_requested and status not in _TERMINAL:
            return
        state.status = status
        state.last_update_time = time.time()
        self._emit(ProgressEventType.STATUS_CHANGE, message)

    def _emit(
        self,
        event_type: ProgressEventType,
        message: str,
        step_id: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        state = self._state
        if state is None or self._events is None or not self._config.enable_progress_tracking:
            return
        self._events.publish(EventKind.PROGRESS, ProgressEvent(
            type=event_type,
            agent_id=state.id,
            step_id=step_id,
            status=state.status,
            progress=state.progress,
            message=message,
            data=data or {},
        ))

    def _emit_error(self, error: AgentError) -> None:
        if self._events is not None:
            self._events.publish(EventKind.ERROR, error)


def stopped_result(state: AgentState, final_observation: Optional[ObservationResult]) -> ExecutionResult:
    """Result for a run that was stopped; built locally without a conclusion."""
    completed = state.count(StepStatus.COMPLETED)
    return ExecutionResult(
        success=False,
        result=final_observation,
        summary=(
            f"Task execution stopped after {state.current_step} of "
            f"{len(state.plan)} steps ({completed} completed)"
        ),
        steps=[s.model_copy(deep=True) for s in state.plan],
        history=list(state.history),
        execution_time_ms=round((time.time() - state.start_time) * 1000, 1),
        error_count=state.error_count,
        confidence=state.confidence,
        recommendations=["Re-run the unfinished steps"],
        metadata={
            "agent_id": state.id,
            "final_status": state.status.value,
            "stopped": True,
            "completed_steps": completed,
            "total_steps": len(state.plan),
            "timestamp": time.time(),
        },
    )
