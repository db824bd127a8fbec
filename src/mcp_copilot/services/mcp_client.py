"""MCP tool client over the SSE transport.

Each operation opens a fresh SSE session:

  1. GET the service URL as ``text/event-stream`` and wait for the
     ``endpoint`` event naming the session's POST URL.
  2. POST ``initialize`` and wait for its response on the stream.
  3. POST the ``notifications/initialized`` notification.
  4. POST ``tools/list`` or ``tools/call`` and wait for the matching response.

The whole exchange is bounded by ``McpConfig.timeout``.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urljoin

import httpx

from mcp_copilot.ai.tools.base import ToolClient
from mcp_copilot.config import McpConfig
from mcp_copilot.core.errors import ToolExecutionError, ToolTransportError
from mcp_copilot.log import get_logger

logger = get_logger(__name__)

JSONRPC_VERSION = "2.0"


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[tuple[str, str]]:
    """Yield ``(event, data)`` pairs from a server-sent event stream."""
    event, data = "message", []
    async for line in response.aiter_lines():
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
    if data:
        yield event, "\n".join(data)


class McpClient(ToolClient):
    """Talks JSON-RPC to MCP services over SSE."""

    def __init__(self, config: McpConfig, transport: httpx.AsyncBaseTransport | None = None):
        self._config = config
        self._transport = transport

    async def list_tools(self, service_endpoint: str) -> list[dict[str, Any]]:
        result = await self._call(service_endpoint, "tools/list", {})
        tools = result.get("tools")
        if not isinstance(tools, list):
            raise ToolExecutionError(f"Service {service_endpoint} returned no tool list")
        logger.info("mcp_tools_listed", endpoint=service_endpoint, count=len(tools))
        return tools

    async def execute(
        self, service_endpoint: str, tool_name: str, arguments: dict[str, Any]
    ) -> Any:
        result = await self._call(
            service_endpoint, "tools/call", {"name": tool_name, "arguments": arguments}
        )
        if result.get("isError"):
            texts = [
                item.get("text", "")
                for item in result.get("content") or []
                if isinstance(item, dict) and item.get("type") == "text"
            ]
            raise ToolExecutionError("; ".join(t for t in texts if t) or f"{tool_name} reported an error")
        return result

    async def _call(self, endpoint: str, method: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            return await asyncio.wait_for(
                self._exchange(endpoint, method, params), timeout=self._config.timeout
            )
        except TimeoutError as e:
            logger.error("mcp_timeout", endpoint=endpoint, method=method, timeout=self._config.timeout)
            raise ToolTransportError(
                f"MCP {method} timed out after {self._config.timeout} seconds"
            ) from e
        except httpx.HTTPError as e:
            logger.error("mcp_transport_error", endpoint=endpoint, method=method, error=str(e))
            raise ToolTransportError(f"MCP {method} failed: {e}") from e

    async def _exchange(self, endpoint: str, method: str, params: dict[str, Any]) -> dict[str, Any]:
        ids = itertools.count(1)
        async with httpx.AsyncClient(transport=self._transport, timeout=None) as client:
            async with client.stream(
                "GET", endpoint, headers={"Accept": "text/event-stream"}
            ) as response:
                response.raise_for_status()
                events = iter_sse_events(response)

                session_url = None
                async for event, data in events:
                    if event == "endpoint":
                        session_url = urljoin(endpoint, data.strip())
                        break
                if session_url is None:
                    raise ToolTransportError(f"SSE stream from {endpoint} closed before endpoint event")
                logger.debug("mcp_session_opened", session_url=session_url)

                init_id = next(ids)
                await self._post(
                    client,
                    session_url,
                    {
                        "jsonrpc": JSONRPC_VERSION,
                        "id": init_id,
                        "method": "initialize",
                        "params": {
                            "protocolVersion": self._config.protocol_version,
                            "capabilities": {},
                            "clientInfo": {
                                "name": self._config.client_name,
                                "version": self._config.client_version,
                            },
                        },
                    },
                )
                await self._await_response(events, init_id, "initialize")
                await self._post(
                    client,
                    session_url,
                    {"jsonrpc": JSONRPC_VERSION, "method": "notifications/initialized", "params": {}},
                )

                request_id = next(ids)
                await self._post(
                    client,
                    session_url,
                    {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method, "params": params},
                )
                return await self._await_response(events, request_id, method)

    @staticmethod
    async def _post(client: httpx.AsyncClient, url: str, payload: dict[str, Any]) -> None:
        response = await client.post(
            url,
            json=payload,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        response.raise_for_status()
        logger.debug("mcp_posted", method=payload["method"], status=response.status_code)

    @staticmethod
    async def _await_response(
        events: AsyncIterator[tuple[str, str]], request_id: int, method: str
    ) -> dict[str, Any]:
        async for _event, data in events:
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.debug("mcp_non_json_event", data=data[:200])
                continue
            if not isinstance(message, dict) or message.get("id") != request_id:
                continue
            if message.get("error"):
                error = message["error"]
                detail = error.get("message") if isinstance(error, dict) else None
                raise ToolExecutionError(f"MCP {method} error: {detail or json.dumps(error)}")
            return message.get("result") or {}
        raise ToolTransportError(f"SSE stream closed before the {method} response arrived")
