"""Shared fixtures and in-memory fakes for the tool-calling loop."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from mcp_copilot.ai.client import ChatClient
from mcp_copilot.ai.react_loop import Orchestrator
from mcp_copilot.ai.tools.base import ToolCallRequest, ToolClient, ToolOutcome
from mcp_copilot.ai.tools.executor import ToolExecutor
from mcp_copilot.ai.tools.registry import McpService, ToolRegistry
from mcp_copilot.config import LoopConfig
from mcp_copilot.core.conversation import ConversationManager
from mcp_copilot.storage.base import ConversationStore
from mcp_copilot.storage.models import Conversation
from mcp_copilot.ui.base import TurnEvents

# ── chunk builders ──────────────────────────────────────────────


def text_chunk(text: str, finish_reason: str | None = None) -> dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": finish_reason}]}


def tool_chunk(
    slot: int, id: str | None = None, name: str | None = None, arguments: str | None = None
) -> dict[str, Any]:
    call: dict[str, Any] = {"index": slot, "function": {}}
    if id is not None:
        call["id"] = id
    if name is not None:
        call["function"]["name"] = name
    if arguments is not None:
        call["function"]["arguments"] = arguments
    return {"choices": [{"index": 0, "delta": {"tool_calls": [call]}, "finish_reason": None}]}


def text_reply(text: str) -> list[dict[str, Any]]:
    return [text_chunk(text, finish_reason="stop")]


def tool_reply(*calls: tuple[str, str, dict[str, Any]], text: str = "") -> list[dict[str, Any]]:
    """Chunks for a reply requesting ``(id, name, arguments)`` tool calls."""
    chunks = [text_chunk(text)] if text else []
    for slot, (call_id, name, arguments) in enumerate(calls):
        raw = json.dumps(arguments)
        half = len(raw) // 2
        chunks.append(tool_chunk(slot, id=call_id, name=name))
        chunks.append(tool_chunk(slot, arguments=raw[:half]))
        chunks.append(tool_chunk(slot, arguments=raw[half:]))
    return chunks


# ── fakes ───────────────────────────────────────────────────────


class FakeChatClient(ChatClient):
    """Replays scripted replies. A reply is a chunk list or an exception to raise."""

    def __init__(self, script: list[Any] | Callable[[int], Any]):
        self._script = script
        self.calls: list[dict[str, Any]] = []

    def _next(self) -> Any:
        index = len(self.calls) - 1
        if callable(self._script):
            return self._script(index)
        if index >= len(self._script):
            raise AssertionError(f"Unexpected model request #{index + 1}")
        return self._script[index]

    async def send_turn(self, messages, tools=None):
        self.calls.append({"messages": messages, "tools": tools})
        reply = self._next()
        if isinstance(reply, BaseException):
            raise reply
        for chunk in reply:
            yield chunk


class FakeToolClient(ToolClient):
    def __init__(self, results: dict[str, Any] | None = None):
        self.results = results or {}
        self.executed: list[tuple[str, str, dict[str, Any]]] = []
        self.listed: list[str] = []
        self.tools: dict[str, list[dict[str, Any]]] = {}

    async def execute(self, service_endpoint, tool_name, arguments):
        self.executed.append((service_endpoint, tool_name, arguments))
        result = self.results.get(tool_name, {"ok": True, "tool": tool_name})
        if isinstance(result, BaseException):
            raise result
        return result

    async def list_tools(self, service_endpoint):
        self.listed.append(service_endpoint)
        tools = self.tools.get(service_endpoint)
        if isinstance(tools, BaseException):
            raise tools
        return tools or []


class InMemoryStore(ConversationStore):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.saves = 0
        self.snapshots: list[list[Conversation]] = []

    async def load(self) -> list[Conversation]:
        return self.snapshots[-1] if self.snapshots else []

    async def save(self, conversations: list[Conversation]) -> bool:
        if self.fail:
            return False
        self.saves += 1
        self.snapshots.append(list(conversations))
        return True


PromptHandler = Callable[[Orchestrator, ToolCallRequest, str], Awaitable[None]]


class RecordingEvents(TurnEvents):
    """Records every event; manual prompts are answered by ``on_prompt`` if set."""

    def __init__(self, on_prompt: PromptHandler | None = None):
        self.on_prompt = on_prompt
        self.orchestrator: Orchestrator | None = None
        self.events: list[tuple[str, Any]] = []
        self.prompts: list[tuple[ToolCallRequest, str, str, bool]] = []

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    async def on_assistant_text(self, content):
        self.events.append(("assistant_text", content))

    async def on_tool_prompt_required(self, call, batch_id, prompt_id, route_missing=False):
        self.events.append(("tool_prompt", call.name))
        self.prompts.append((call, batch_id, prompt_id, route_missing))
        if self.on_prompt is not None:
            await self.on_prompt(self.orchestrator, call, prompt_id)

    async def on_tool_result(self, call, outcome: ToolOutcome):
        self.events.append(("tool_result", outcome))

    async def on_turn_complete(self, content):
        self.events.append(("turn_complete", content))

    async def on_turn_failed(self, error):
        self.events.append(("turn_failed", error))


# ── registry ────────────────────────────────────────────────────

SERVICE_URL = "http://intel.local/sse"

INTEL_TOOLS = (
    {
        "name": "ip_lookup",
        "description": "Look up an IP address",
        "inputSchema": {
            "type": "object",
            "properties": {"ip": {"type": "string"}},
            "required": ["ip"],
        },
    },
    {
        "name": "whois",
        "description": "WHOIS record for a domain",
        "inputSchema": {
            "type": "object",
            "properties": {"domain": {"type": "string"}},
            "required": ["domain"],
        },
    },
    {
        "name": "set_level",
        "description": "Set alert level",
        "inputSchema": {
            "type": "object",
            "properties": {"level": {"type": "string", "enum": ["low", "high"]}},
            "required": ["level"],
        },
    },
)


def intel_service(**overrides: Any) -> McpService:
    fields: dict[str, Any] = {
        "id": "intel",
        "name": "Threat Intel",
        "url": SERVICE_URL,
        "tools": INTEL_TOOLS,
    }
    fields.update(overrides)
    return McpService(**fields)


def make_registry(auto: tuple[str, ...] = ()) -> ToolRegistry:
    registry = ToolRegistry()
    registry.refresh([intel_service()], auto_execute_map={f"intel:{name}": True for name in auto})
    return registry


# ── orchestrator harness ────────────────────────────────────────


class Harness:
    def __init__(
        self,
        script: list[Any] | Callable[[int], Any],
        auto: tuple[str, ...] = (),
        config: LoopConfig | None = None,
        on_prompt: PromptHandler | None = None,
        tool_results: dict[str, Any] | None = None,
        sufficiency=None,
    ):
        self.chat = FakeChatClient(script)
        self.tools = FakeToolClient(tool_results)
        self.store = InMemoryStore()
        self.registry = make_registry(auto)
        self.conversations = ConversationManager(self.store)
        self.events = RecordingEvents(on_prompt)
        self.orchestrator = Orchestrator(
            chat_client=self.chat,
            executor=ToolExecutor(self.registry, self.tools),
            registry=self.registry,
            conversations=self.conversations,
            events=self.events,
            config=config or LoopConfig(retry_backoff=0),
            sufficiency=sufficiency,
        )
        self.events.orchestrator = self.orchestrator

    async def run(self, text: str = "Look up 1.2.3.4"):
        conversation = await self.conversations.create()
        self.conversation_id = conversation.id
        return await self.orchestrator.run_turn(conversation.id, text)

    @property
    def messages(self):
        return self.conversations.require(self.conversation_id).messages


@pytest.fixture
def harness():
    return Harness
