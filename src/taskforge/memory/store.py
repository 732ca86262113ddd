"""
memory/store.py - In-Process Conversation Store + Memory Provider

Process-lifetime implementations of the two memory collaborators the agent
core consumes:

  - InMemoryConversationStore (ConversationStore): conversations keyed by id,
    each a bounded list of ChatMessages. Task results are appended here
    as assistant messages.
  - KeywordMemoryProvider (MemoryProvider): remembered snippets ranked by
    keyword overlap with the task text.

No persistence; both are cleared when the process restarts.
"""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from taskforge.agent.interfaces import ConversationStore, MemoryProvider
from taskforge.observability.logger import get_logger

log = get_logger(__name__)

_WORD_RE = re.compile(r"[a-z0-9]{3,}")


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class Conversation:
    id: str
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


class InMemoryConversationStore(ConversationStore):

    def __init__(self, max_messages: int = 200):
        self.max_messages = max_messages
        self._conversations: dict[str, Conversation] = {}

    def create(self, messages: Optional[list[ChatMessage]] = None, conversation_id: Optional[str] = None) -> str:
        cid = conversation_id or f"conv_{uuid.uuid4().hex[:12]}"
        self._conversations[cid] = Conversation(id=cid, messages=list(messages or [])[-self.max_messages:])
        log.debug("conversation.created", conversation_id=cid)
        return cid

    async def get_by_id(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    async def append_message(self, conversation_id: str, text: str, role: str) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise KeyError(f"Conversation '{conversation_id}' does not exist")
        conversation.messages.append(ChatMessage(role=Role(role), content=text))
        # Oldest messages go first once the cap is reached.
        del conversation.messages[:-self.max_messages]
        conversation.updated_at = time.time()
        log.debug("conversation.message_appended", conversation_id=conversation_id, role=role)

    def messages(self, conversation_id: str) -> list[ChatMessage]:
        conversation = self._conversations.get(conversation_id)
        return list(conversation.messages) if conversation else []

    def delete(self, conversation_id: str) -> bool:
        return self._conversations.pop(conversation_id, None) is not None

    def __len__(self) -> int:
        return len(self._conversations)


@dataclass
class MemoryEntry:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    keywords: frozenset[str] = frozenset()


class KeywordMemoryProvider(MemoryProvider):
    """Ranks snippets by the number of keywords they share with the task."""

    def __init__(self, capacity: int = 1_000):
        self.capacity = capacity
        self._entries: list[MemoryEntry] = []

    def add(self, text: str, metadata: Optional[dict[str, Any]] = None) -> None:
        self._entries.append(MemoryEntry(text=text, metadata=metadata or {}, keywords=_keywords(text)))
        if len(self._entries) > self.capacity:
            self._entries.pop(0)

    async def remember(self, text: str, metadata: Optional[dict[str, Any]] = None) -> None:
        self.add(text, metadata)
        log.debug("memory.remembered", entries=len(self._entries))

    async def find_related(self, task: str, k: int) -> list[Any]:
        if k <= 0:
            return []
        wanted = _keywords(task)
        # insertion order breaks ties in favour of the most recent entry
        scored = [
            (len(wanted & entry.keywords), position, entry)
            for position, entry in enumerate(self._entries)
        ]
        ranked = sorted((s for s in scored if s[0] > 0), key=lambda s: (s[0], s[1]), reverse=True)
        hits = [entry.text for _, _, entry in ranked[:k]]
        log.debug("memory.find_related", query_keywords=len(wanted), hits=len(hits))
        return hits

    def __len__(self) -> int:
        return len(self._entries)


def _keywords(text: str) -> frozenset[str]:
    return frozenset(_WORD_RE.findall(text.lower()))
