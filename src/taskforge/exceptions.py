"""
exceptions.py - Taskforge Unified Error Hierarchy

All taskforge-specific exceptions live here. Every layer of the stack
raises typed subclasses of TaskforgeError, never bare Exception.

Import from here, not from individual modules:
    from taskforge.exceptions import StructuredOutputError, SessionNotFoundError

Hierarchy:
    TaskforgeError
    ├── AgentExecutionError
    │   └── SessionTimeoutError
    ├── StructuredOutputError
    ├── SessionError
    │   ├── SessionNotFoundError
    │   └── ConversationNotFoundError
    ├── EventStreamClosedError
    ├── ToolError
    │   └── ToolNotFoundError
    └── LLMError
        ├── LLMConnectionError
        ├── LLMRateLimitError
        ├── LLMContextError
        └── LLMInvalidRequestError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class TaskforgeError(Exception):
    """Base class for all taskforge exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Agent layer
# ─────────────────────────────────────────────────────────────────────────────

class AgentExecutionError(TaskforgeError):
    """Base for agent run errors."""


class SessionTimeoutError(AgentExecutionError):
    """The caller's wait for a session result ran out of time."""

    def __init__(self, session_id: str, timeout: float) -> None:
        self.session_id = session_id
        self.timeout = timeout
        super().__init__(f"Session '{session_id}' did not finish within {timeout}s")


# ─────────────────────────────────────────────────────────────────────────────
# Structured output
# ─────────────────────────────────────────────────────────────────────────────

class StructuredOutputError(TaskforgeError):
    """
    Raised by tolerant_decode() when no structured payload could be
    recovered from a reasoning-service response, or when the payload
    lacks required fields.
    """

    def __init__(self, message: str, raw: str = "", missing: Optional[list[str]] = None) -> None:
        self.raw = raw
        self.missing = missing or []
        super().__init__(message)


# ─────────────────────────────────────────────────────────────────────────────
# Sessions
# ─────────────────────────────────────────────────────────────────────────────

class SessionError(TaskforgeError):
    """Base for session registry errors."""


class SessionNotFoundError(SessionError):
    """No session is registered under the given id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Unknown session '{session_id}'")


class ConversationNotFoundError(SessionError):
    """start_task() was given a conversation id the store doesn't know."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation '{conversation_id}' does not exist")


class EventStreamClosedError(TaskforgeError):
    """publish() was called on a stream that has already been closed."""


# ─────────────────────────────────────────────────────────────────────────────
# Tool layer
# ─────────────────────────────────────────────────────────────────────────────

class ToolError(TaskforgeError):
    """Base for tool catalogue errors."""


class ToolNotFoundError(ToolError):
    """Requested tool is not registered in the ToolRegistry."""

    def __init__(self, name: str, available: Optional[list[str]] = None) -> None:
        self.name = name
        self.available = available or []
        super().__init__(f"Unknown tool '{name}'. Available tools: {self.available}")


# ─────────────────────────────────────────────────────────────────────────────
# LLM backends
# ─────────────────────────────────────────────────────────────────────────────

class LLMError(TaskforgeError):
    """A chat backend call failed. `provider` names the backend ("all" after failover)."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        """Worth retrying against the same backend."""
        return False


class LLMConnectionError(LLMError):
    """Backend unreachable, timed out or rejected the credentials."""

    @property
    def transient(self) -> bool:
        return True


class LLMRateLimitError(LLMError):
    """Backend asked us to slow down; `retry_after` is in seconds when known."""

    def __init__(self, message: str, provider: str = "", retry_after: Optional[float] = None) -> None:
        super().__init__(message, provider, status_code=429)
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        return True


class LLMContextError(LLMError):
    """Prompt does not fit the model's context window."""


class LLMInvalidRequestError(LLMError):
    """Backend refused the request parameters."""


# ─────────────────────────────────────────────────────────────────────────────
# Convenience: all public names
# ─────────────────────────────────────────────────────────────────────────────

__all__ = [
    "TaskforgeError",
    # Agent
    "AgentExecutionError",
    "SessionTimeoutError",
    # Structured output
    "StructuredOutputError",
    # Sessions
    "SessionError",
    "SessionNotFoundError",
    "ConversationNotFoundError",
    "EventStreamClosedError",
    # Tools
    "ToolError",
    "ToolNotFoundError",
    # LLM
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
]
