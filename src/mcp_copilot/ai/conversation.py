"""Convert conversation history to OpenAI chat-completion message format."""

from __future__ import annotations

from typing import Any

from mcp_copilot.core.types import Role
from mcp_copilot.storage.models import Message

TRUNCATION_MARKER = "\n...(truncated)"


def _truncate(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def build_messages(
    history: list[Message],
    system_prompt: str | None = None,
    max_history: int | None = None,
    include_tool_results: bool = True,
    max_tool_result_length: int = 0,
) -> list[dict[str, Any]]:
    """Convert stored messages into the completion API ``messages`` list.

    Only the last *max_history* records are sent. A tool message is emitted
    only if its call appears in an earlier assistant message of the window,
    so cutting the window never produces an orphaned tool result. When
    *include_tool_results* is false, tool messages and the assistant
    ``tool_calls`` they answer are both left out.
    """
    window = history[-max_history:] if max_history else list(history)
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    seen_call_ids: set[str] = set()
    for record in window:
        match record.role:
            case Role.USER | Role.SYSTEM:
                messages.append({"role": str(record.role), "content": record.content or ""})

            case Role.ASSISTANT:
                entry: dict[str, Any] = {"role": "assistant", "content": record.content or None}
                if include_tool_results and record.tool_calls:
                    entry["tool_calls"] = [c.to_api_dict() for c in record.tool_calls]
                    seen_call_ids.update(c.id for c in record.tool_calls)
                if entry["content"] is None and "tool_calls" not in entry:
                    continue
                messages.append(entry)

            case Role.TOOL:
                if not include_tool_results or record.tool_call_id not in seen_call_ids:
                    continue
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": record.tool_call_id,
                        "content": _truncate(record.content or "", max_tool_result_length),
                    }
                )

    return messages
