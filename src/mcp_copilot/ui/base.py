"""UI sink interface: events emitted by the tool-calling loop."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcp_copilot.ai.tools.base import ToolCallRequest, ToolOutcome


class TurnEvents:
    """Receives loop events. Every hook defaults to a no-op.

    To add a renderer, subclass this and override the hooks it needs. The
    loop never renders anything itself; a renderer answers a prompt by
    calling ``Orchestrator.confirm_tool`` or ``Orchestrator.cancel_tool``
    with the prompt id it was given.
    """

    async def on_assistant_text(self, content: str) -> None:
        """Assistant text, emitted in order.

        Called for the text accompanying a tool-call reply (the model's
        reasoning before acting) as well as for the final answer.
        """

    async def on_tool_prompt_required(
        self,
        call: ToolCallRequest,
        batch_id: str,
        prompt_id: str,
        route_missing: bool = False,
    ) -> None:
        """A manual tool is waiting for confirmation.

        *route_missing* is True when no enabled service owns the tool;
        confirming it records a routing error.
        """

    async def on_tool_result(self, call: ToolCallRequest, outcome: ToolOutcome) -> None:
        """A tool finished, successfully or not (see ``outcome.ok``)."""

    async def on_turn_complete(self, content: str) -> None:
        ...

    async def on_turn_failed(self, error: Exception) -> None:
        ...
