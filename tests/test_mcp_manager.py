"""Tests for the MCP service manager and its state file."""

import json

import pytest

from conftest import INTEL_TOOLS, FakeToolClient

from mcp_copilot.ai.tools.registry import ToolRegistry
from mcp_copilot.config import McpServiceConfig
from mcp_copilot.core.errors import ToolTransportError
from mcp_copilot.services.mcp_manager import McpManager

INTEL_URL = "http://intel.local/sse"
DNS_URL = "http://dns.local/sse"

SERVICES = [
    McpServiceConfig(id="intel", name="Threat Intel", url=INTEL_URL),
    McpServiceConfig(id="dns", name="DNS", url=DNS_URL),
]

DNS_TOOLS = [{"name": "resolve", "inputSchema": {"type": "object"}}]


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state" / "mcp_state.json"


@pytest.fixture
def client():
    client = FakeToolClient()
    client.tools = {INTEL_URL: list(INTEL_TOOLS), DNS_URL: DNS_TOOLS}
    return client


@pytest.fixture
def registry():
    return ToolRegistry()


def _manager(client, registry, state_path, services=SERVICES):
    return McpManager(services, client, registry, state_path)


class TestMcpManager:
    async def test_refresh_populates_registry_and_state(self, client, registry, state_path):
        manager = _manager(client, registry, state_path)
        assert registry.tool_names() == []

        await manager.refresh_tools()

        assert sorted(registry.tool_names()) == ["ip_lookup", "resolve", "set_level", "whois"]
        state = json.loads(state_path.read_text(encoding="utf-8"))
        assert [t["name"] for t in state["tool_cache"]["dns"]] == ["resolve"]

    async def test_cache_survives_restart(self, client, registry, state_path):
        await _manager(client, registry, state_path).refresh_tools()

        offline = FakeToolClient()
        fresh = ToolRegistry()
        _manager(offline, fresh, state_path)

        assert sorted(fresh.tool_names()) == ["ip_lookup", "resolve", "set_level", "whois"]
        assert offline.listed == []

    async def test_unreachable_service_keeps_cached_tools(self, client, registry, state_path):
        manager = _manager(client, registry, state_path)
        await manager.refresh_tools()

        client.tools[DNS_URL] = ToolTransportError("connection refused")
        await manager.refresh_tools()

        assert registry.find_owner("resolve") == "dns"

    async def test_disabled_service_is_not_queried(self, client, registry, state_path):
        manager = _manager(client, registry, state_path)
        manager.set_service_enabled("dns", False)

        await manager.refresh_tools()

        assert client.listed == [INTEL_URL]
        assert registry.get("resolve") is None

    async def test_tool_flags_persist(self, client, registry, state_path):
        manager = _manager(client, registry, state_path)
        await manager.refresh_tools()

        manager.set_tool_enabled("intel", "set_level", False)
        manager.set_auto_execute("intel", "ip_lookup", True)

        assert registry.get("set_level") is None
        assert registry.get("ip_lookup").auto_execute is True

        state = json.loads(state_path.read_text(encoding="utf-8"))
        assert state["enabled"] == {"intel:set_level": False}
        assert state["auto_execute"] == {"intel:ip_lookup": True}

        reloaded = ToolRegistry()
        _manager(FakeToolClient(), reloaded, state_path)
        assert reloaded.get("ip_lookup").auto_execute is True
        assert reloaded.get("set_level") is None

    def test_unknown_service(self, client, registry, state_path):
        manager = _manager(client, registry, state_path)
        with pytest.raises(KeyError):
            manager.set_tool_enabled("nope", "x", True)

    def test_corrupt_state_file_is_ignored(self, client, registry, state_path):
        state_path.parent.mkdir(parents=True)
        state_path.write_text("{not json", encoding="utf-8")

        manager = _manager(client, registry, state_path)

        assert [s.tools for s in manager.services()] == [(), ()]
