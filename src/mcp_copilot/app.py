"""Application wiring: builds all components and manages their lifecycle."""

from __future__ import annotations

from pathlib import Path

from mcp_copilot.ai.client import OpenAIChatClient
from mcp_copilot.ai.policies import results_look_sufficient
from mcp_copilot.ai.react_loop import Orchestrator, TurnResult
from mcp_copilot.ai.tools.executor import ToolExecutor
from mcp_copilot.ai.tools.registry import ToolRegistry
from mcp_copilot.config import AppConfig
from mcp_copilot.core.conversation import ConversationManager
from mcp_copilot.log import get_logger
from mcp_copilot.services.mcp_client import McpClient
from mcp_copilot.services.mcp_manager import McpManager
from mcp_copilot.storage.conversation_repo import ConversationRepository
from mcp_copilot.storage.database import Database
from mcp_copilot.ui.base import TurnEvents

logger = get_logger(__name__)


class CopilotApp:
    """Top-level application object."""

    def __init__(self, config: AppConfig, events: TurnEvents | None = None):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.conversation_repo = ConversationRepository(self.db)
        self.conversations = ConversationManager(self.conversation_repo)
        self.tool_registry = ToolRegistry()
        self.mcp_client = McpClient(config.mcp)
        self.mcp_manager = McpManager(
            config.mcp.services,
            client=self.mcp_client,
            registry=self.tool_registry,
            state_path=Path(config.mcp.state_path),
        )
        self.chat_client = OpenAIChatClient(config.api)
        self.orchestrator = Orchestrator(
            chat_client=self.chat_client,
            executor=ToolExecutor(self.tool_registry, self.mcp_client),
            registry=self.tool_registry,
            conversations=self.conversations,
            events=events,
            config=config.loop,
            sufficiency=results_look_sufficient if config.loop.sufficiency_check else None,
        )

    async def start(self, refresh_tools: bool = True) -> None:
        """Open storage, load conversations and refresh the tool catalog."""
        await self.db.initialize()
        await self.conversations.load()
        if refresh_tools:
            await self.mcp_manager.refresh_tools()
        logger.info(
            "mcp_copilot_started",
            conversations=len(self.conversations.all()),
            tools=len(self.tool_registry.all_tools()),
        )

    async def stop(self) -> None:
        await self.db.close()
        logger.info("mcp_copilot_stopped")

    async def ask(self, text: str, conversation_id: str | None = None) -> TurnResult:
        """Run one user turn, creating a conversation if none is current."""
        if conversation_id is None:
            current = self.conversations.current()
            conversation_id = current.id if current else (await self.conversations.create()).id
        return await self.orchestrator.run_turn(conversation_id, text)
