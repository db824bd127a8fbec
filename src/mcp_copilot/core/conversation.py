"""Conversation manager: the append-only conversation log and its lifecycle."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from mcp_copilot.core.errors import PersistenceFailure
from mcp_copilot.core.types import Role
from mcp_copilot.log import get_logger
from mcp_copilot.storage.base import ConversationStore
from mcp_copilot.storage.models import Conversation, Message

logger = get_logger(__name__)

DEFAULT_TITLE = "New conversation"
TITLE_LENGTH = 30

OWNER_EMAILS_KEY = "owner_emails"
OWNER_EMAILS_UPDATED_KEY = "owner_emails_updated_at"

_EMAIL = r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}"
_OWNER_EMAIL_RE = re.compile(
    rf"(?:owner|资产负责人|负责人|所有者)[^@\n]{{0,40}}?({_EMAIL})", re.IGNORECASE
)


def extract_owner_emails(text: str | None) -> list[str]:
    """Addresses that follow an owner keyword within the same line, in order, deduplicated."""
    if not text:
        return []
    return list(dict.fromkeys(m.group(1).lower() for m in _OWNER_EMAIL_RE.finditer(text)))


class ConversationManager:
    """Holds all conversations in memory and persists after every mutation.

    Every mutating method awaits a durable save before returning and raises
    PersistenceFailure if the store reports the save failed.
    """

    def __init__(self, store: ConversationStore):
        self._store = store
        self._conversations: list[Conversation] = []
        self.current_id: str | None = None

    async def load(self) -> list[Conversation]:
        self._conversations = await self._store.load()
        logger.info("conversations_loaded", count=len(self._conversations))
        return self._conversations

    async def save(self) -> None:
        if not await self._store.save(self._conversations):
            logger.error("conversations_save_failed", count=len(self._conversations))
            raise PersistenceFailure("Conversation could not be saved; reload to resync.")

    async def create(self, title: str = DEFAULT_TITLE) -> Conversation:
        conversation = Conversation(title=title)
        self._conversations.insert(0, conversation)
        self.current_id = conversation.id
        await self.save()
        logger.info("conversation_created", conversation_id=conversation.id)
        return conversation

    def switch(self, conversation_id: str) -> Conversation | None:
        conversation = self.get(conversation_id)
        if conversation is None:
            logger.warning("conversation_not_found", conversation_id=conversation_id)
            return None
        self.current_id = conversation_id
        return conversation

    def get(self, conversation_id: str) -> Conversation | None:
        return next((c for c in self._conversations if c.id == conversation_id), None)

    def require(self, conversation_id: str) -> Conversation:
        conversation = self.get(conversation_id)
        if conversation is None:
            raise KeyError(f"Unknown conversation: {conversation_id}")
        return conversation

    def current(self) -> Conversation | None:
        return self.get(self.current_id) if self.current_id else None

    def all(self) -> list[Conversation]:
        return list(self._conversations)

    async def delete(self, conversation_id: str) -> bool:
        conversation = self.get(conversation_id)
        if conversation is None:
            return False
        self._conversations.remove(conversation)
        if self.current_id == conversation_id:
            self.current_id = self._conversations[0].id if self._conversations else None
        await self.save()
        logger.info("conversation_deleted", conversation_id=conversation_id)
        return True

    async def rename(self, conversation_id: str, title: str) -> None:
        self.require(conversation_id).title = title
        await self.save()

    async def set_metadata(self, conversation_id: str, key: str, value: object) -> None:
        self.require(conversation_id).metadata[key] = value
        await self.save()

    def owner_emails(self, conversation_id: str) -> list[str]:
        return list(self.require(conversation_id).metadata.get(OWNER_EMAILS_KEY) or [])

    def _record_owner_emails(self, conversation: Conversation, emails: list[str]) -> None:
        known = [e.lower() for e in conversation.metadata.get(OWNER_EMAILS_KEY) or []]
        added = [e for e in emails if e not in known]
        if not added:
            return
        conversation.metadata[OWNER_EMAILS_KEY] = known + added
        conversation.metadata[OWNER_EMAILS_UPDATED_KEY] = datetime.now(timezone.utc).isoformat()
        logger.info("owner_emails_detected", conversation_id=conversation.id, emails=added)

    async def append(self, conversation_id: str, message: Message, persist: bool = True) -> Message:
        """Append a message and persist.

        Tool-role messages must answer a call made by an earlier assistant
        message of the same conversation. Owner addresses found in user or
        assistant text are merged into the conversation metadata.
        """
        conversation = self.require(conversation_id)
        if message.role == Role.TOOL and message.tool_call_id not in conversation.tool_call_ids():
            raise ValueError(
                f"Tool message {message.tool_call_id!r} has no matching assistant tool call"
            )
        conversation.messages.append(message)

        if (
            message.role == Role.USER
            and conversation.title == DEFAULT_TITLE
            and sum(1 for m in conversation.messages if m.role == Role.USER) == 1
            and message.content
        ):
            text = message.content.strip()
            conversation.title = text[:TITLE_LENGTH] + ("..." if len(text) > TITLE_LENGTH else "")

        if message.role in (Role.USER, Role.ASSISTANT):
            self._record_owner_emails(conversation, extract_owner_emails(message.content))

        if persist:
            await self.save()
        return message
