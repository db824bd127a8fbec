"""Prompt templates for the tool-calling loop."""

from __future__ import annotations

import json

from mcp_copilot.ai.tools.base import ToolOutcome
from mcp_copilot.core.types import ConclusionReason

SYSTEM_DEFAULT = "You are a helpful assistant."

SYSTEM_FUNCTION_CALLING = """You are an assistant that solves tasks with the ReAct (reason + act) pattern.

Structure every reply with these sections:

**Reasoning:** analyse the request and decide what to do next.
**Acting:** list the tools you are about to call and why. Skip this section when no tool is needed.
**Observation:** after tool results come back, state what they show.
**Response:** the final answer for the user.

Rules:
1. Use the provided tools for live data, lookups and actions instead of guessing.
2. To use a tool, issue a real function call. Describing a call in text does not run it.
3. If a tool fails, explain the failure and suggest what the user can do.
4. Several tools may be called to complete a complex task.
5. Simple questions may skip Acting and Observation, but always end with a Response."""

OWNER_GUIDANCE = """

### Owner notification
- Asset owner email addresses detected in this conversation: {emails}
- When the owner needs to be notified, draft an email to these addresses with a mail tool if one is
  available (do not send it). State the purpose, the findings to share and the recipients.
- Keep the draft complete enough to be sent as is."""

_CONCLUSION_LEADS = {
    ConclusionReason.CANCELLED: (
        "The user cancelled the remaining tool calls. Tools are no longer available."
    ),
    ConclusionReason.SUFFICIENT: (
        "The tool results below already contain enough information. "
        "Do not call any more tools."
    ),
    ConclusionReason.EMPTY_ANSWER: (
        "You did not produce an answer after the tool calls. Tools are no longer available."
    ),
}

CONCLUSION_DETAILED = """{lead}

Original question: {query}

Tool results:
{results}

Write the final answer now, based only on the results above. Use the actual values
returned by the tools, never placeholders. If the results are incomplete, say which
information is missing."""

CONCLUSION_COMPACT = """{lead}

Question: {query}

Results:
{results}

Answer the question briefly using these results."""


def _excerpt(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _format_results(results: list[ToolOutcome], limit: int) -> str:
    lines = []
    for i, outcome in enumerate(results, 1):
        status = "ok" if outcome.ok else "failed"
        lines.append(f"{i}. {outcome.tool_name} ({status}): {_excerpt(outcome.content(), limit)}")
    return "\n".join(lines) if lines else "(no results)"


def conclusion_prompt(
    reason: ConclusionReason, query: str, results: list[ToolOutcome], compact: bool = False
) -> str:
    """Instruction sent as the last user message of a forced conclusion request."""
    template = CONCLUSION_COMPACT if compact else CONCLUSION_DETAILED
    return template.format(
        lead=_CONCLUSION_LEADS[reason],
        query=query,
        results=_format_results(results, 800 if compact else 1500),
    )


def results_summary(query: str, results: list[ToolOutcome], excerpt_length: int = 500) -> str:
    """Markdown summary shown when the model produced no usable conclusion."""
    lines = ["## Tool results summary", "", f"**Question:** {query}", ""]
    for outcome in results:
        if outcome.ok:
            body = outcome.content()
            lines.append(f"- **{outcome.tool_name}**: succeeded")
            lines.append("")
            lines.append("```")
            lines.append(_excerpt(body, excerpt_length))
            lines.append("```")
        else:
            lines.append(f"- **{outcome.tool_name}**: failed: {outcome.error}")
        lines.append("")
    lines.append("_The model did not return a conclusion; the raw results are shown above._")
    return "\n".join(lines)


def owner_guidance(emails: list[str]) -> str:
    """System prompt section naming the owner addresses known for the conversation."""
    return OWNER_GUIDANCE.format(emails=", ".join(emails)) if emails else ""


def not_executed(call_name: str, reason: str) -> str:
    return json.dumps({"status": "not_executed", "tool": call_name, "reason": reason})


def cancelled_note(tool_names: list[str]) -> str:
    names = ", ".join(tool_names) or "the requested tools"
    return f"Tool execution cancelled ({names}). Ask again to continue the analysis."


def error_note(error: BaseException) -> str:
    return f"**Error:** {error}"
