"""Tests for the MCP SSE client, using httpx.MockTransport."""

import json

import httpx
import pytest

from mcp_copilot.config import McpConfig
from mcp_copilot.core.errors import ToolExecutionError, ToolTransportError
from mcp_copilot.services.mcp_client import McpClient

BASE = "http://mcp.local/sse"


def sse(*events: tuple[str, object]) -> bytes:
    lines = []
    for event, data in events:
        payload = data if isinstance(data, str) else json.dumps(data)
        if event != "message":
            lines.append(f"event: {event}")
        lines.append(f"data: {payload}")
        lines.append("")
    return ("\n".join(lines) + "\n").encode()


def rpc(id: int, result=None, error=None) -> dict:
    message = {"jsonrpc": "2.0", "id": id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result
    return message


class FakeServer:
    """Serves one SSE body and records every JSON-RPC POST."""

    def __init__(self, body: bytes, post_status: int = 202):
        self.body = body
        self.post_status = post_status
        self.posted: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            assert request.headers["accept"] == "text/event-stream"
            return httpx.Response(200, content=self.body, headers={"content-type": "text/event-stream"})
        self.posted.append(json.loads(request.content))
        return httpx.Response(self.post_status)


def client_for(server: FakeServer, **config) -> McpClient:
    return McpClient(McpConfig(**config), transport=httpx.MockTransport(server))


INITIALIZED = rpc(1, {"protocolVersion": "2024-11-05", "capabilities": {}})


class TestMcpClient:
    async def test_list_tools_handshake(self):
        tools = [{"name": "ip_lookup", "inputSchema": {"type": "object"}}]
        server = FakeServer(
            sse(
                ("endpoint", "/messages?session_id=abc"),
                ("message", INITIALIZED),
                ("message", "keep-alive"),
                ("message", rpc(2, {"tools": tools})),
            )
        )

        result = await client_for(server).list_tools(BASE)

        assert result == tools
        assert [p["method"] for p in server.posted] == [
            "initialize",
            "notifications/initialized",
            "tools/list",
        ]
        assert server.posted[0]["params"]["clientInfo"]["name"] == "mcp-copilot"
        assert "id" not in server.posted[1]

    async def test_call_tool(self):
        payload = {"content": [{"type": "text", "text": "AU"}]}
        server = FakeServer(
            sse(("endpoint", "/messages"), ("message", INITIALIZED), ("message", rpc(2, payload)))
        )

        result = await client_for(server).execute(BASE, "ip_lookup", {"ip": "1.2.3.4"})

        assert result == payload
        assert server.posted[2]["params"] == {"name": "ip_lookup", "arguments": {"ip": "1.2.3.4"}}

    async def test_is_error_result(self):
        payload = {"isError": True, "content": [{"type": "text", "text": "rate limited"}]}
        server = FakeServer(
            sse(("endpoint", "/messages"), ("message", INITIALIZED), ("message", rpc(2, payload)))
        )

        with pytest.raises(ToolExecutionError, match="rate limited"):
            await client_for(server).execute(BASE, "ip_lookup", {})

    async def test_jsonrpc_error(self):
        server = FakeServer(
            sse(
                ("endpoint", "/messages"),
                ("message", INITIALIZED),
                ("message", rpc(2, error={"code": -32602, "message": "Unknown tool"})),
            )
        )

        with pytest.raises(ToolExecutionError, match="Unknown tool"):
            await client_for(server).execute(BASE, "nmap", {})

    async def test_stream_without_endpoint_event(self):
        server = FakeServer(sse(("message", INITIALIZED)))
        with pytest.raises(ToolTransportError, match="endpoint"):
            await client_for(server).list_tools(BASE)

    async def test_stream_closed_before_response(self):
        server = FakeServer(sse(("endpoint", "/messages"), ("message", INITIALIZED)))
        with pytest.raises(ToolTransportError, match="closed"):
            await client_for(server).list_tools(BASE)

    async def test_http_error_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = McpClient(McpConfig(), transport=httpx.MockTransport(handler))
        with pytest.raises(ToolTransportError, match="refused"):
            await client.list_tools(BASE)

    async def test_rejected_post(self):
        server = FakeServer(sse(("endpoint", "/messages"), ("message", INITIALIZED)), post_status=500)
        with pytest.raises(ToolTransportError):
            await client_for(server).list_tools(BASE)
