"""
agent/interfaces.py - External Collaborator Contracts

The agent core talks to four collaborators it does not own:

    ReasoningService    text generation (an LLM behind brain/service.py)
    ToolCatalog         side-effecting tools (tools/registry.py)
    MemoryProvider      related-memory lookup (memory/store.py)
    ConversationStore   conversation context + result persistence (memory/store.py)

Everything here is abstract; tests substitute AsyncMock objects with the
same method names.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field

from taskforge.agent.types import ToolDescriptor, ToolOutcome


class GenerateOptions(BaseModel):
    """Per-call options for ReasoningService.generate_text()."""
    model: Optional[str] = None
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, ge=1)
    system_prompt: str = ""


class ReasoningService(ABC):

    @abstractmethod
    async def generate_text(self, prompt: str, options: GenerateOptions) -> str:
        """
        Return free text. Callers must tolerate arbitrary wrapping of any
        structured payload (see agent/decoding.py).
        """
        ...


class ToolCatalog(ABC):

    @abstractmethod
    def list_tools(self) -> list[ToolDescriptor]:
        ...

    @abstractmethod
    async def invoke(self, name: str, input: dict[str, Any]) -> ToolOutcome:
        """Run one tool. Independently callable per invocation."""
        ...


class MemoryProvider(ABC):

    @abstractmethod
    async def find_related(self, task: str, k: int) -> list[Any]:
        """Return up to k opaque memory snippets related to the task."""
        ...

    async def remember(self, text: str, metadata: Optional[dict[str, Any]] = None) -> None:
        """Record a finished run. Read-only providers keep this no-op."""
        return None


class ConversationStore(ABC):

    @abstractmethod
    async def get_by_id(self, conversation_id: str) -> Optional[Any]:
        """Return the conversation context, or None when it doesn't exist."""
        ...

    @abstractmethod
    async def append_message(self, conversation_id: str, text: str, role: str) -> None:
        ...
