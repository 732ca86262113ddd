"""
agent/ - ReAct agent core

SessionManager owns sessions; each session runs one AgentEngine that plans,
then loops reasoning → acting → observing per step, with reflection as a
background side-channel and a ResultSynthesizer producing the final result.
"""

from taskforge.agent.engine import AgentEngine
from taskforge.agent.events import EventKind, EventStream, EventSubscription, SessionEvent
from taskforge.agent.interfaces import (
    ConversationStore,
    GenerateOptions,
    MemoryProvider,
    ReasoningService,
    ToolCatalog,
)
from taskforge.agent.session_manager import Session, SessionManager
from taskforge.agent.types import (
    AgentError,
    AgentState,
    AgentStatus,
    ExecutionContext,
    ExecutionResult,
    ProgressEvent,
    SessionStatus,
)

__all__ = [
    "AgentEngine",
    "AgentError",
    "AgentState",
    "AgentStatus",
    "ConversationStore",
    "EventKind",
    "EventStream",
    "EventSubscription",
    "ExecutionContext",
    "ExecutionResult",
    "GenerateOptions",
    "MemoryProvider",
    "ProgressEvent",
    "ReasoningService",
    "Session",
    "SessionEvent",
    "SessionManager",
    "SessionStatus",
    "ToolCatalog",
]
