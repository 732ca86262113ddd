"""
kernel/bootstrap.py - Agent Stack Factory

Wires the whole agent stack from Settings in one place so the CLI and tests
share one construction path:

    ChatBackends (provider, then fallbacks)
        → LLMReasoningService (retry + failover)
    ToolRegistry (+ workspace file tools)
    InMemoryConversationStore + KeywordMemoryProvider
        → SessionManager

Usage:
    from taskforge.kernel.bootstrap import build_agent_stack
    stack = build_agent_stack(settings)
    session_id = await stack.sessions.start_task(task, goal, conversation_id)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from taskforge.agent.session_manager import SessionManager
from taskforge.brain.backends import ChatBackend, create_backend
from taskforge.brain.service import LLMReasoningService
from taskforge.config.settings import Settings
from taskforge.exceptions import LLMError
from taskforge.memory.store import InMemoryConversationStore, KeywordMemoryProvider
from taskforge.observability.logger import get_logger
from taskforge.tools.registry import ToolRegistry
from taskforge.tools.workspace import register_workspace_tools

log = get_logger(__name__)


@dataclass
class AgentStack:
    """All wired components returned by build_agent_stack()."""
    settings: Settings
    reasoning: LLMReasoningService
    tools: ToolRegistry
    memory: KeywordMemoryProvider
    conversations: InMemoryConversationStore
    sessions: SessionManager


def _provider_base_url(settings: Settings, provider: str) -> Optional[str]:
    if provider == "ollama":
        return settings.ollama_base_url_v1
    return settings.openai_base_url


def build_backends(settings: Settings) -> list[ChatBackend]:
    """Configured provider first, then every usable fallback provider."""
    llm = settings.llm
    backends = [create_backend(
        llm.default_provider,
        api_key=settings.api_key_for(llm.default_provider),
        base_url=_provider_base_url(settings, llm.default_provider),
        timeout_seconds=llm.timeout_seconds,
    )]
    for provider in llm.fallback_providers:
        if provider == llm.default_provider:
            continue
        try:
            backends.append(create_backend(
                provider,
                api_key=settings.api_key_for(provider),
                base_url=_provider_base_url(settings, provider),
                timeout_seconds=llm.timeout_seconds,
            ))
        except (LLMError, ValueError) as e:
            log.warning("bootstrap.fallback_skipped", provider=provider, error=str(e))
    return backends


def build_agent_stack(
    settings: Settings,
    backends: Optional[list[ChatBackend]] = None,
    tools: Optional[ToolRegistry] = None,
) -> AgentStack:
    """
    Build the full stack. `backends` and `tools` may be injected (tests,
    embedding hosts); otherwise they are created from settings.
    """
    reasoning = LLMReasoningService(backends or build_backends(settings), settings.llm)

    if tools is None:
        tools = ToolRegistry(timeout_seconds=settings.tools.timeout_seconds)
        if settings.tools.enable_workspace_tools:
            register_workspace_tools(tools, settings.tools.workspace_dir)

    # filled by the SessionManager with every successful run
    memory = KeywordMemoryProvider()
    conversations = InMemoryConversationStore()
    sessions = SessionManager(
        reasoning=reasoning,
        tools=tools,
        memory=memory,
        conversations=conversations,
        config=settings.agent,
        session_config=settings.sessions,
    )

    log.info(
        "bootstrap.stack_ready",
        reasoning=repr(reasoning),
        tools=tools.list_names(),
        max_steps=settings.agent.max_steps,
    )
    return AgentStack(
        settings=settings,
        reasoning=reasoning,
        tools=tools,
        memory=memory,
        conversations=conversations,
        sessions=sessions,
    )
