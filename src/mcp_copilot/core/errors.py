"""Error taxonomy for the tool-calling loop."""

from __future__ import annotations

from enum import StrEnum


class CopilotError(Exception):
    """Base class for all mcp-copilot errors."""


class StreamMalformed(CopilotError):
    """A stream chunk could not be parsed into a frame."""


class ToolArgumentsMalformed(CopilotError):
    """A completed tool call carries arguments that are not valid JSON."""

    def __init__(self, tool_name: str, raw_arguments: str, reason: str):
        super().__init__(f"Arguments for '{tool_name}' are not valid JSON: {reason}")
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments


class ValidationErrorKind(StrEnum):
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_ENUM_VALUE = "invalid_enum_value"
    INVALID_TYPE = "invalid_type"


class ArgumentValidationError(CopilotError):
    """Tool arguments do not satisfy the tool's declared schema."""

    def __init__(self, kind: ValidationErrorKind, tool_name: str, field: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.tool_name = tool_name
        self.field = field


class ToolRoutingError(CopilotError):
    """No enabled service owns the requested tool."""


class ToolTransportError(CopilotError):
    """Network failure or timeout talking to a tool backend."""


class ToolExecutionError(CopilotError):
    """The tool backend answered, but reported the call as failed."""


class ToolNameConflict(CopilotError):
    """Two enabled services expose a tool with the same name."""

    def __init__(self, conflicts: dict[str, list[str]]):
        details = "; ".join(f"{name}: {', '.join(ids)}" for name, ids in sorted(conflicts.items()))
        super().__init__(f"Tool names exposed by more than one service: {details}")
        self.conflicts = conflicts


class ChatTransportError(CopilotError):
    """The chat-completion endpoint could not be reached or rejected the request."""


class ResubmissionTransportError(ChatTransportError):
    """Re-submitting tool results to the model failed after all retries."""


class EmptyModelResponse(CopilotError):
    """The model returned neither content nor tool calls.

    ``empty_stream`` is True when the transport delivered no chunks at all,
    as opposed to a reply whose content was blank.
    """

    def __init__(self, message: str, empty_stream: bool = False):
        super().__init__(message)
        self.empty_stream = empty_stream


class RecursionLimitExceeded(CopilotError):
    """The loop dispatched tools the maximum number of times for one user turn."""

    def __init__(self, depth: int, limit: int):
        super().__init__(
            f"Tool calling reached the maximum depth ({limit}); the model kept requesting tools."
        )
        self.depth = depth
        self.limit = limit


class PersistenceFailure(CopilotError):
    """The conversation store reported that a save did not succeed."""
