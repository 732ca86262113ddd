"""
agent/types.py - Agent Data Models

Every record the agent core produces or consumes: plan steps, thoughts,
history entries, tool call results, phase results, progress events, error
reports and the terminal ExecutionResult.

Confidence fields are constrained to [0, 1] at the model level so an
out-of-range value can never be stored.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class AgentStatus(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    REASONING = "reasoning"
    ACTING = "acting"
    OBSERVING = "observing"
    REFLECTING = "reflecting"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class StepType(str, Enum):
    REASONING = "reasoning"
    ACTION = "action"
    OBSERVATION = "observation"
    REFLECTION = "reflection"
    PLANNING = "planning"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ThoughtType(str, Enum):
    ANALYSIS = "analysis"
    PLANNING = "planning"
    DECISION = "decision"
    EVALUATION = "evaluation"
    REFLECTION = "reflection"


class SessionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


class ProgressEventType(str, Enum):
    STEP_START = "step_start"
    STEP_COMPLETE = "step_complete"
    STEP_ERROR = "step_error"
    PROGRESS_UPDATE = "progress_update"
    STATUS_CHANGE = "status_change"


class ErrorType(str, Enum):
    TOOL_ERROR = "tool_error"
    REASONING_ERROR = "reasoning_error"
    PLANNING_ERROR = "planning_error"
    EXECUTION_ERROR = "execution_error"
    VALIDATION_ERROR = "validation_error"


# ─────────────────────────────────────────────────────────────────────────────
# Plan
# ─────────────────────────────────────────────────────────────────────────────


class Thought(BaseModel):
    id: str = Field(default_factory=lambda: new_id("th"))
    type: ThoughtType = ThoughtType.ANALYSIS
    content: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = ""
    timestamp: float = Field(default_factory=time.time)


# Allowed step transitions. FAILED -> RUNNING is the bounded retry path.
_STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING}),
    StepStatus.RUNNING: frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.FAILED}),
    StepStatus.FAILED: frozenset({StepStatus.RUNNING}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}


class TaskStep(BaseModel):
    """
    One planned unit of work.

    Status changes go through start()/complete()/skip()/fail() so that the
    forward-only transition rule is enforced in one place.
    """
    id: str = Field(default_factory=lambda: new_id("step"))
    type: StepType
    description: str
    expected_outcome: str = ""
    dependencies: list[str] = Field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    thoughts: list[Thought] = Field(default_factory=list)
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_finished(self) -> bool:
        return self.status in (StepStatus.COMPLETED, StepStatus.SKIPPED)

    def _transition(self, new: StepStatus) -> None:
        if new not in _STEP_TRANSITIONS[self.status]:
            raise ValueError(
                f"Step {self.id}: illegal transition {self.status.value} -> {new.value}"
            )
        self.status = new

    def start(self) -> None:
        retrying = self.status == StepStatus.FAILED
        self._transition(StepStatus.RUNNING)
        if retrying:
            # Retry starts from a clean slate; only the attempt counter survives.
            self.thoughts = []
            self.result = None
            self.error = None
            self.end_time = None
            self.duration_ms = None
        self.metadata["attempts"] = self.metadata.get("attempts", 0) + 1
        self.start_time = time.time()

    def _finish(self, status: StepStatus) -> None:
        self._transition(status)
        self.end_time = time.time()
        if self.start_time is not None:
            self.duration_ms = round((self.end_time - self.start_time) * 1000, 1)

    def complete(self, result: dict[str, Any]) -> None:
        self._finish(StepStatus.COMPLETED)
        self.result = result

    def skip(self, result: dict[str, Any]) -> None:
        self._finish(StepStatus.SKIPPED)
        self.result = result

    def fail(self, error: str) -> None:
        self._finish(StepStatus.FAILED)
        self.error = error


# ─────────────────────────────────────────────────────────────────────────────
# Tools
# ─────────────────────────────────────────────────────────────────────────────


class ToolDescriptor(BaseModel):
    """What the ToolCatalog advertises for one tool."""
    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )


class ToolOutcome(BaseModel):
    """Raw return of ToolCatalog.invoke()."""
    output: Any = None
    error: Optional[str] = None


class ToolCallResult(BaseModel):
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    success: bool
    error: Optional[str] = None
    execution_time_ms: float = Field(default=0.0, ge=0.0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def retry_count(self) -> int:
        return int(self.metadata.get("retry_count", 0))


class ExecutionStats(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    total_execution_time_ms: float = 0.0
    average_execution_time_ms: float = 0.0
    fastest: Optional[str] = None
    slowest: Optional[str] = None
    max_execution_time_ms: float = 0.0


# ─────────────────────────────────────────────────────────────────────────────
# Context
# ─────────────────────────────────────────────────────────────────────────────


class ExecutionContext(BaseModel):
    """Built once by the SessionManager, read-only afterwards."""
    model_config = ConfigDict(frozen=True)

    task: str
    goal: str
    constraints: list[str] = Field(default_factory=list)
    available_tools: list[ToolDescriptor] = Field(default_factory=list)
    memory: list[Any] = Field(default_factory=list)
    conversation_history: list[Any] = Field(default_factory=list)
    user_preferences: dict[str, Any] = Field(default_factory=dict)
    environment: dict[str, Any] = Field(default_factory=dict)

    @property
    def tool_names(self) -> list[str]:
        return [t.name for t in self.available_tools]


# ─────────────────────────────────────────────────────────────────────────────
# Phase results
# ─────────────────────────────────────────────────────────────────────────────


class ReasoningResult(BaseModel):
    thoughts: list[Thought] = Field(default_factory=list)
    next_action: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""
    alternatives: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_fallback(self) -> bool:
        return bool(self.metadata.get("is_fallback"))


class ObservationIssue(BaseModel):
    type: str = "general"
    description: str = ""
    severity: str = "medium"
    suggestions: list[str] = Field(default_factory=list)


class ObservationResult(BaseModel):
    observations: list[str] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    implications: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    issues: list[ObservationIssue] = Field(default_factory=list)
    execution_stats: Optional[ExecutionStats] = None
    key_findings: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_fallback(self) -> bool:
        return bool(self.metadata.get("is_fallback"))


class ReflectionResult(BaseModel):
    what_worked: list[str] = Field(default_factory=list)
    what_didnt_work: list[str] = Field(default_factory=list)
    lessons_learned: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    next_time_strategy: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    timestamp: float = Field(default_factory=time.time)


# ─────────────────────────────────────────────────────────────────────────────
# History
# ─────────────────────────────────────────────────────────────────────────────


class HistoryEntry(BaseModel):
    """Immutable record of one fully executed step."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("hist"))
    step_id: str
    type: StepType
    description: str
    reasoning: ReasoningResult
    actions: tuple[ToolCallResult, ...] = ()
    observation: ObservationResult
    success: bool = True
    timestamp: float = Field(default_factory=time.time)
    duration_ms: float = 0.0
    thoughts: tuple[Thought, ...] = ()


# ─────────────────────────────────────────────────────────────────────────────
# State
# ─────────────────────────────────────────────────────────────────────────────


class AgentState(BaseModel):
    """Owned and mutated only by one AgentEngine's step loop."""
    id: str = Field(default_factory=lambda: new_id("agent"))
    task: str
    goal: str
    status: AgentStatus = AgentStatus.IDLE
    current_step: int = 0
    total_steps: int = 0
    plan: list[TaskStep] = Field(default_factory=list)
    history: list[HistoryEntry] = Field(default_factory=list)
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    error_count: int = 0
    retry_count: int = 0
    start_time: float = Field(default_factory=time.time)
    last_update_time: float = Field(default_factory=time.time)
    context: ExecutionContext
    metadata: dict[str, Any] = Field(default_factory=dict)

    def steps_with(self, status: StepStatus) -> list[TaskStep]:
        return [s for s in self.plan if s.status == status]

    def count(self, status: StepStatus) -> int:
        return len(self.steps_with(status))


# ─────────────────────────────────────────────────────────────────────────────
# Exposed records
# ─────────────────────────────────────────────────────────────────────────────


class ProgressEvent(BaseModel):
    type: ProgressEventType
    agent_id: str
    step_id: Optional[str] = None
    status: AgentStatus
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


class AgentError(BaseModel):
    type: ErrorType
    message: str
    details: str = ""
    step_id: Optional[str] = None
    recoverable: bool = True
    suggestions: list[str] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)


class ExecutionResult(BaseModel):
    """Produced exactly once per run."""
    success: bool
    result: Optional[ObservationResult] = None
    summary: str = ""
    task_conclusion: Optional[dict[str, Any]] = None
    steps: list[TaskStep] = Field(default_factory=list)
    history: list[HistoryEntry] = Field(default_factory=list)
    execution_time_ms: float = 0.0
    error_count: int = 0
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    recommendations: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
