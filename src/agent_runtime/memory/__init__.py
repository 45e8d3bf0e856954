"""Persistence of conversation memories, participant state and entities."""

from agent_runtime.memory.store import (
    FACTS_TABLE,
    MESSAGES_TABLE,
    InMemoryMessageStore,
    MessageStore,
)

__all__ = ["FACTS_TABLE", "InMemoryMessageStore", "MESSAGES_TABLE", "MessageStore"]
