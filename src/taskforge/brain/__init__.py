"""
brain/ - Language-model access for the agent core.

LLMReasoningService (the ReasoningService the engine talks to) sits on top
of one or more ChatBackends: the configured provider first, then the
fallback providers.
"""

from taskforge.brain.backends import ChatBackend, OllamaBackend, OpenAIBackend, create_backend
from taskforge.brain.service import LLMReasoningService

__all__ = ["ChatBackend", "OpenAIBackend", "OllamaBackend", "create_backend", "LLMReasoningService"]
