"""Abstract conversation store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from mcp_copilot.storage.models import Conversation


class ConversationStore(ABC):
    """Durable storage for the conversation list."""

    @abstractmethod
    async def load(self) -> list[Conversation]:
        ...

    @abstractmethod
    async def save(self, conversations: list[Conversation]) -> bool:
        """Persist all conversations. Must return False rather than pretend success."""
        ...
