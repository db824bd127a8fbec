"""MCP service manager: tool cache and per-tool flags.

Services come from the configuration. A local JSON state file keeps each
service's last known tool list plus the ``serviceId:toolName`` enabled and
auto-execute flag maps, so the catalog is available before any service is
reachable and user choices survive restarts.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from mcp_copilot.ai.tools.base import ToolClient
from mcp_copilot.ai.tools.registry import McpService, ToolDescriptor, ToolRegistry, tool_key
from mcp_copilot.config import McpServiceConfig
from mcp_copilot.core.errors import ToolExecutionError, ToolTransportError
from mcp_copilot.log import get_logger

logger = get_logger(__name__)


class McpManager:
    """Keeps the ToolRegistry in sync with the configured MCP services.

    Workflow:
      1. On construction the state file is loaded and the registry is built
         from the cached tool lists.
      2. ``refresh_tools`` asks every enabled service for its tools, updates
         the cache and replaces the registry catalog wholesale.
      3. Flag changes are written to the state file and applied to the
         registry immediately.
    """

    def __init__(
        self,
        services: list[McpServiceConfig],
        client: ToolClient,
        registry: ToolRegistry,
        state_path: Path,
    ) -> None:
        self._services = {s.id: s for s in services}
        self._client = client
        self._registry = registry
        self._state_path = state_path
        self._tool_cache: dict[str, list[dict[str, Any]]] = {}
        self._enabled: dict[str, bool] = {}
        self._auto_execute: dict[str, bool] = {}
        self._service_enabled: dict[str, bool] = {}
        self._load()
        self.rebuild()

    # ── persistence ─────────────────────────────────────────────

    def _load(self) -> None:
        if not self._state_path.exists():
            return
        try:
            state = json.loads(self._state_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.error("mcp_state_load_error", path=str(self._state_path), error=str(e))
            return
        self._tool_cache = state.get("tool_cache", {})
        self._enabled = state.get("enabled", {})
        self._auto_execute = state.get("auto_execute", {})
        self._service_enabled = state.get("service_enabled", {})
        logger.info("mcp_state_loaded", cached_services=len(self._tool_cache))

    def _save(self) -> None:
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        state = {
            "tool_cache": self._tool_cache,
            "enabled": self._enabled,
            "auto_execute": self._auto_execute,
            "service_enabled": self._service_enabled,
        }
        self._state_path.write_text(json.dumps(state, indent=2, ensure_ascii=False), encoding="utf-8")

    # ── public API ──────────────────────────────────────────────

    def services(self) -> list[McpService]:
        return [
            McpService(
                id=cfg.id,
                name=cfg.name,
                url=cfg.url,
                enabled=self._service_enabled.get(cfg.id, cfg.enabled),
                tools=tuple(self._tool_cache.get(cfg.id, [])),
            )
            for cfg in self._services.values()
        ]

    def rebuild(self) -> list[ToolDescriptor]:
        """Rebuild the registry from the cached tool lists."""
        return self._registry.refresh(self.services(), self._enabled, self._auto_execute)

    async def refresh_tools(self) -> list[ToolDescriptor]:
        """Fetch tool lists from every enabled service, then rebuild the registry.

        A service that cannot be reached keeps its previously cached tools.
        """
        for service in self.services():
            if not service.enabled:
                continue
            try:
                tools = await self._client.list_tools(service.url)
            except (ToolTransportError, ToolExecutionError) as e:
                logger.warning("mcp_refresh_failed", service_id=service.id, error=str(e))
                continue
            self._tool_cache[service.id] = tools
        self._save()
        return self.rebuild()

    def set_service_enabled(self, service_id: str, enabled: bool) -> None:
        self._require(service_id)
        self._service_enabled[service_id] = enabled
        self._save()
        self.rebuild()
        logger.info("mcp_service_toggled", service_id=service_id, enabled=enabled)

    def set_tool_enabled(self, service_id: str, tool_name: str, enabled: bool) -> None:
        self._require(service_id)
        self._enabled[tool_key(service_id, tool_name)] = enabled
        self._save()
        self.rebuild()
        logger.info("mcp_tool_toggled", service_id=service_id, tool=tool_name, enabled=enabled)

    def set_auto_execute(self, service_id: str, tool_name: str, auto_execute: bool) -> None:
        self._require(service_id)
        self._auto_execute[tool_key(service_id, tool_name)] = auto_execute
        self._save()
        self.rebuild()
        logger.info(
            "mcp_auto_execute_toggled", service_id=service_id, tool=tool_name, auto=auto_execute
        )

    def _require(self, service_id: str) -> McpServiceConfig:
        if service_id not in self._services:
            raise KeyError(f"Unknown MCP service: {service_id}")
        return self._services[service_id]
