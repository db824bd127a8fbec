"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class LoopState(StrEnum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    DISPATCHING_TOOLS = "dispatching_tools"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"
    TERMINAL = "terminal"


class BatchState(StrEnum):
    PENDING = "pending"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class TurnStatus(StrEnum):
    COMPLETED = "completed"  # model-authored final answer
    CONCLUDED = "concluded"  # forced conclusion with the tool catalog omitted
    SUMMARY = "summary"  # raw results summary, model produced nothing usable
    CANCELLED = "cancelled"
    FAILED = "failed"


class ConclusionReason(StrEnum):
    CANCELLED = "cancelled"
    SUFFICIENT = "sufficient"
    EMPTY_ANSWER = "empty_answer"
