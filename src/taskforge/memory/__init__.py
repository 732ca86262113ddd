from taskforge.memory.store import (
    ChatMessage,
    Conversation,
    InMemoryConversationStore,
    KeywordMemoryProvider,
    Role,
)

__all__ = ["ChatMessage", "Conversation", "InMemoryConversationStore", "KeywordMemoryProvider", "Role"]
