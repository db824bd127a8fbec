"""Route a validated tool call to its owning service."""

from __future__ import annotations

from mcp_copilot.ai.tools.base import ToolCallRequest, ToolClient, ToolOutcome
from mcp_copilot.ai.tools.registry import ToolRegistry
from mcp_copilot.ai.tools.validation import ArgumentValidator
from mcp_copilot.core.errors import (
    ArgumentValidationError,
    ToolArgumentsMalformed,
    ToolExecutionError,
    ToolRoutingError,
    ToolTransportError,
)
from mcp_copilot.log import get_logger

logger = get_logger(__name__)


class ToolExecutor:
    """Parses, validates and executes a single tool call.

    Every failure is returned as an error ``ToolOutcome`` so that one bad call
    never aborts its siblings in the same batch.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        client: ToolClient,
        validator: ArgumentValidator | None = None,
    ):
        self._registry = registry
        self._client = client
        self._validator = validator or ArgumentValidator()

    async def execute(self, call: ToolCallRequest) -> ToolOutcome:
        service_id = self._registry.find_owner(call.name)
        service = self._registry.service(service_id) if service_id else None
        if service is None:
            logger.warning("tool_route_missing", tool=call.name)
            return ToolOutcome.failure(
                call, ToolRoutingError(f"No enabled service provides tool '{call.name}'")
            )

        try:
            raw_args = call.arguments()
        except ToolArgumentsMalformed as e:
            logger.error("tool_args_malformed", tool=call.name, raw=call.raw_arguments[:200])
            return ToolOutcome.failure(call, e, service_id=service_id)

        try:
            args = self._validator.validate(call.name, raw_args, self._registry.schema_for(call.name))
        except ArgumentValidationError as e:
            logger.error("tool_args_invalid", tool=call.name, kind=e.kind, field=e.field)
            return ToolOutcome.failure(call, e, service_id=service_id, arguments=raw_args)

        logger.info("tool_executing", tool=call.name, service_id=service_id)
        try:
            result = await self._client.execute(service.url, call.name, args)
        except (ToolTransportError, ToolExecutionError) as e:
            logger.error("tool_execution_error", tool=call.name, error=str(e))
            return ToolOutcome.failure(call, e, service_id=service_id, arguments=args)
        except Exception as e:
            logger.error("tool_execution_error", tool=call.name, error=str(e))
            return ToolOutcome.failure(
                call, ToolExecutionError(f"Error executing {call.name}: {e}"), service_id, args
            )

        logger.info("tool_executed", tool=call.name, service_id=service_id)
        return ToolOutcome(call=call, result=result, service_id=service_id, arguments=args)
