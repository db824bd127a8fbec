"""Terminal renderer for the interactive ``chat`` command."""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING, TextIO

from mcp_copilot.log import get_logger
from mcp_copilot.ui.base import TurnEvents

if TYPE_CHECKING:
    from mcp_copilot.ai.react_loop import Orchestrator
    from mcp_copilot.ai.tools.base import ToolCallRequest, ToolOutcome
    from mcp_copilot.ai.tools.registry import ToolRegistry

logger = get_logger(__name__)

RESULT_PREVIEW = 300


class ConsoleEvents(TurnEvents):
    """Prints loop events and asks y/N before running manual tools."""

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        out: TextIO | None = None,
        assume_yes: bool = False,
    ):
        self._registry = registry
        self._out = out or sys.stdout
        self._assume_yes = assume_yes
        self._orchestrator: Orchestrator | None = None

    def bind(self, orchestrator: Orchestrator, registry: ToolRegistry | None = None) -> None:
        self._orchestrator = orchestrator
        if registry is not None:
            self._registry = registry

    def _print(self, text: str = "") -> None:
        print(text, file=self._out, flush=True)

    async def _ask(self, question: str) -> bool:
        if self._assume_yes:
            self._print(f"{question} y (auto)")
            return True
        answer = await asyncio.to_thread(input, f"{question} [y/N] ")
        return answer.strip().lower() in ("y", "yes")

    async def on_assistant_text(self, content: str) -> None:
        self._print()
        self._print(content)
        self._print()

    async def on_tool_prompt_required(
        self,
        call: ToolCallRequest,
        batch_id: str,
        prompt_id: str,
        route_missing: bool = False,
    ) -> None:
        if self._orchestrator is None:
            raise RuntimeError("ConsoleEvents is not bound to an orchestrator")

        owner = self._registry.owner_label(call.name) if self._registry else None
        if route_missing:
            self._print(f"! Tool '{call.name}' is not provided by any enabled service.")
        label = f"{call.name} ({owner})" if owner else call.name
        self._print(f"> Tool call: {label}")
        self._print(f"  arguments: {call.raw_arguments or '{}'}")

        approved = await self._ask("  Run this tool?")
        logger.debug("tool_prompt_answered", tool=call.name, prompt_id=prompt_id, approved=approved)
        if approved:
            await self._orchestrator.confirm_tool(prompt_id)
        else:
            await self._orchestrator.cancel_tool(prompt_id)

    async def on_tool_result(self, call: ToolCallRequest, outcome: ToolOutcome) -> None:
        if not outcome.ok:
            self._print(f"< {call.name} failed: {outcome.error}")
            return
        body = outcome.content()
        if len(body) > RESULT_PREVIEW:
            body = body[:RESULT_PREVIEW] + "..."
        self._print(f"< {call.name}: {body}")

    async def on_turn_failed(self, error: Exception) -> None:
        self._print(f"Error: {error}")
