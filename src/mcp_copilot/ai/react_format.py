"""Parse ReAct-formatted assistant text.

Replies are split on ``Reasoning:``, ``Acting:``, ``Observation:`` and
``Response:`` headers (case-insensitive, optionally bold). ``claimed_actions``
is a heuristic only: it flags tool names mentioned in Acting text of a reply
that made no tool call. It never changes loop control.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

_HEADER_RE = re.compile(
    r"(?:\*\*)?(Reasoning|Acting|Observation|Response)(?:\*\*)?\s*[:：]\s*(?:\*\*)?",
    re.IGNORECASE,
)


@dataclass
class ReActIteration:
    index: int
    reasoning: str = ""
    acting: str = ""
    observation: str = ""

    def has_content(self) -> bool:
        return bool(self.reasoning or self.acting or self.observation)


@dataclass
class ReActTrace:
    iterations: list[ReActIteration] = field(default_factory=list)
    response: str = ""

    @property
    def acting_text(self) -> str:
        return "\n".join(i.acting for i in self.iterations if i.acting)


def parse_react_trace(text: str | None) -> ReActTrace | None:
    """Split text into ReAct iterations. Returns None if no section is found."""
    if not text:
        return None
    matches = list(_HEADER_RE.finditer(text))
    if not matches:
        return None

    trace = ReActTrace()
    responses: list[str] = []
    current: ReActIteration | None = None

    def push() -> None:
        if current is not None and current.has_content():
            trace.iterations.append(current)

    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        body = text[match.end():end].strip()
        stage = match.group(1).lower()
        if stage == "response":
            responses.append(body)
            continue
        if stage == "reasoning" or current is None:
            push()
            current = ReActIteration(index=len(trace.iterations) + 1)
        setattr(current, stage, body)
    push()

    trace.response = "\n\n".join(r for r in responses if r).strip()
    if not trace.iterations and not trace.response:
        return None
    return trace


def is_final_answer(text: str | None) -> bool:
    """True if the text has a Response section, or is plain non-ReAct text."""
    if not text or not text.strip():
        return False
    trace = parse_react_trace(text)
    return trace is None or bool(trace.response)


def claimed_actions(text: str | None, tool_names: Iterable[str]) -> list[str]:
    """Known tool names mentioned in the Acting sections of *text*."""
    trace = parse_react_trace(text)
    if trace is None or not trace.acting_text:
        return []
    acting = trace.acting_text
    return [
        name for name in tool_names if re.search(rf"(?<![\w-]){re.escape(name)}(?![\w-])", acting)
    ]
