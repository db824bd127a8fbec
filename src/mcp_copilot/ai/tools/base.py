"""Tool-call records and the abstract tool backend interface."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from mcp_copilot.core.errors import ToolArgumentsMalformed


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """A model-issued tool call, as assembled from the stream."""

    id: str
    name: str
    raw_arguments: str = ""

    def arguments(self) -> dict[str, Any]:
        """Parse the raw JSON arguments. An empty string means no arguments."""
        if not self.raw_arguments.strip():
            return {}
        try:
            parsed = json.loads(self.raw_arguments)
        except json.JSONDecodeError as e:
            raise ToolArgumentsMalformed(self.name, self.raw_arguments, str(e)) from e
        if not isinstance(parsed, dict):
            raise ToolArgumentsMalformed(
                self.name, self.raw_arguments, f"expected an object, got {type(parsed).__name__}"
            )
        return parsed

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the OpenAI ``tool_calls`` entry format."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments or "{}"},
        }

    @classmethod
    def from_api_dict(cls, data: dict[str, Any]) -> ToolCallRequest:
        function = data.get("function") or {}
        arguments = function.get("arguments", "")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        return cls(id=data.get("id", ""), name=function.get("name", ""), raw_arguments=arguments)


@dataclass(slots=True)
class ToolOutcome:
    """Result of one tool execution: either a result or a typed failure."""

    call: ToolCallRequest
    result: Any = None
    error: str | None = None
    error_type: str | None = None
    service_id: str | None = None
    arguments: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def tool_name(self) -> str:
        return self.call.name

    def content(self) -> str:
        """Text recorded in the tool-role message for this outcome."""
        if self.error is not None:
            return f"Error ({self.error_type or 'ToolError'}): {self.error}"
        if isinstance(self.result, str):
            return self.result
        return json.dumps(self.result, ensure_ascii=False, indent=2)

    @classmethod
    def failure(
        cls,
        call: ToolCallRequest,
        error: BaseException,
        service_id: str | None = None,
        arguments: dict[str, Any] | None = None,
    ) -> ToolOutcome:
        return cls(
            call=call,
            error=str(error),
            error_type=type(error).__name__,
            service_id=service_id,
            arguments=arguments or {},
        )


class ToolClient(ABC):
    """Backend that can execute a named tool on a tool service."""

    @abstractmethod
    async def execute(self, service_endpoint: str, tool_name: str, arguments: dict[str, Any]) -> Any:
        """Run the tool and return its JSON result.

        Raises ToolTransportError on network failures and ToolExecutionError
        when the backend reports the call as failed.
        """
        ...

    @abstractmethod
    async def list_tools(self, service_endpoint: str) -> list[dict[str, Any]]:
        """Return the tool definitions (name, description, inputSchema) of a service."""
        ...
