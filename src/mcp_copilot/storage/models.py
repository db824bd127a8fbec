"""Data models for storage layer."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from mcp_copilot.ai.tools.base import ToolCallRequest
from mcp_copilot.core.types import Role


@dataclass
class Message:
    role: Role
    content: Optional[str] = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls, content: str | None, tool_calls: list[ToolCallRequest] | None = None, **metadata: Any
    ) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []), metadata=metadata)

    @classmethod
    def tool(cls, call: ToolCallRequest, content: str, **metadata: Any) -> Message:
        return cls(
            role=Role.TOOL,
            content=content,
            tool_call_id=call.id,
            tool_name=call.name,
            metadata=metadata,
        )


@dataclass
class Conversation:
    id: str = field(default_factory=lambda: f"conv-{uuid.uuid4().hex[:12]}")
    title: str = "New conversation"
    messages: list[Message] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def tool_call_ids(self) -> set[str]:
        return {call.id for m in self.messages if m.role == Role.ASSISTANT for call in m.tool_calls}
