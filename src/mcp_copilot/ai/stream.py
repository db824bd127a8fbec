"""Reassemble streamed completion deltas into content and tool calls.

OpenAI-style streams deliver text and tool calls in fragments. Text fragments
are concatenated in arrival order. Tool-call fragments are keyed by an integer
slot index: a slot's ``id`` and ``name`` are taken from the first fragment
that carries them, and its ``arguments`` string is appended fragment by
fragment until the stream ends.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterable
from dataclasses import dataclass, field
from typing import Any

from mcp_copilot.ai.tools.base import ToolCallRequest
from mcp_copilot.core.errors import StreamMalformed
from mcp_copilot.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ToolCallFragment:
    slot: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True, slots=True)
class StreamFrame:
    text: str | None = None
    tool_calls: tuple[ToolCallFragment, ...] = ()
    finish_reason: str | None = None


@dataclass(slots=True)
class StreamResult:
    content: str
    tool_calls: list[ToolCallRequest] | None
    frame_count: int = 0
    skipped_frames: int = 0
    finish_reason: str | None = None

    @property
    def empty_stream(self) -> bool:
        """True when the transport delivered no frames at all."""
        return self.frame_count == 0

    @property
    def has_content(self) -> bool:
        return bool(self.content.strip())


def _optional_str(value: Any, what: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise StreamMalformed(f"{what} must be a string, got {type(value).__name__}")
    return value


def parse_chunk(chunk: Any) -> StreamFrame:
    """Convert one ``chat.completion.chunk`` dict into a frame.

    Chunks without choices (usage-only chunks) produce an empty frame.
    """
    if not isinstance(chunk, dict):
        raise StreamMalformed(f"chunk must be an object, got {type(chunk).__name__}")
    choices = chunk.get("choices")
    if not choices:
        return StreamFrame()
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        raise StreamMalformed("choices must be a list of objects")

    choice = choices[0]
    delta = choice.get("delta") or {}
    if not isinstance(delta, dict):
        raise StreamMalformed("delta must be an object")

    fragments: list[ToolCallFragment] = []
    raw_calls = delta.get("tool_calls") or []
    if not isinstance(raw_calls, list):
        raise StreamMalformed("delta.tool_calls must be a list")
    for raw in raw_calls:
        if not isinstance(raw, dict):
            raise StreamMalformed("tool call fragment must be an object")
        slot = raw.get("index", 0)
        if not isinstance(slot, int) or isinstance(slot, bool):
            raise StreamMalformed(f"tool call index must be an integer, got {slot!r}")
        function = raw.get("function") or {}
        if not isinstance(function, dict):
            raise StreamMalformed("tool call function must be an object")
        fragments.append(
            ToolCallFragment(
                slot=slot,
                id=_optional_str(raw.get("id"), "tool call id"),
                name=_optional_str(function.get("name"), "function name"),
                arguments=_optional_str(function.get("arguments"), "function arguments"),
            )
        )

    return StreamFrame(
        text=_optional_str(delta.get("content"), "delta.content"),
        tool_calls=tuple(fragments),
        finish_reason=choice.get("finish_reason"),
    )


@dataclass
class _Slot:
    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)


class StreamAccumulator:
    """Accumulates frames of one streamed completion."""

    def __init__(self) -> None:
        self._text: list[str] = []
        self._slots: dict[int, _Slot] = {}
        self._frames = 0
        self._skipped = 0
        self._finish_reason: str | None = None

    def feed(self, frame: StreamFrame) -> None:
        self._frames += 1
        if frame.text:
            self._text.append(frame.text)
        for fragment in frame.tool_calls:
            slot = self._slots.setdefault(fragment.slot, _Slot())
            if fragment.id and not slot.id:
                slot.id = fragment.id
            if fragment.name and not slot.name:
                slot.name = fragment.name
            if fragment.arguments:
                slot.arguments.append(fragment.arguments)
        if frame.finish_reason:
            self._finish_reason = frame.finish_reason

    def feed_chunk(self, chunk: Any) -> bool:
        """Parse and feed a raw chunk. Malformed chunks are skipped and logged."""
        try:
            frame = parse_chunk(chunk)
        except StreamMalformed as e:
            self._frames += 1
            self._skipped += 1
            logger.warning("stream_chunk_skipped", error=str(e))
            return False
        self.feed(frame)
        return True

    def result(self) -> StreamResult:
        tool_calls: list[ToolCallRequest] | None = None
        if self._slots:
            tool_calls = [
                ToolCallRequest(
                    id=slot.id or f"call_{uuid.uuid4().hex[:24]}",
                    name=slot.name,
                    raw_arguments="".join(slot.arguments),
                )
                for _, slot in sorted(self._slots.items())
            ]
        return StreamResult(
            content="".join(self._text),
            tool_calls=tool_calls,
            frame_count=self._frames,
            skipped_frames=self._skipped,
            finish_reason=self._finish_reason,
        )

    async def consume(self, stream: AsyncIterable[Any]) -> StreamResult:
        """Drain a chunk stream and return the assembled result."""
        async for chunk in stream:
            self.feed_chunk(chunk)
        result = self.result()
        if result.empty_stream:
            logger.warning("stream_empty")
        elif result.tool_calls and not result.content:
            logger.debug("stream_tool_calls_only", count=len(result.tool_calls))
        return result
