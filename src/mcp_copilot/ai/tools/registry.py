"""Tool registry aggregating tools from every enabled MCP service."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from mcp_copilot.core.errors import ToolNameConflict
from mcp_copilot.log import get_logger

logger = get_logger(__name__)


def tool_key(service_id: str, tool_name: str) -> str:
    """Key used by the enabled and auto-execute flag maps."""
    return f"{service_id}:{tool_name}"


@dataclass(frozen=True, slots=True)
class McpService:
    """A tool service and its cached tool definitions."""

    id: str
    name: str
    url: str
    enabled: bool = True
    tools: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    name: str
    service_id: str
    service_name: str
    json_schema: dict[str, Any] = field(default_factory=dict)
    description: str = ""
    enabled: bool = True
    auto_execute: bool = False

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the OpenAI function-calling tool format."""
        schema = self.json_schema or {}
        parameters: dict[str, Any] = {
            "type": schema.get("type", "object"),
            "properties": schema.get("properties", {}),
            "required": schema.get("required", []),
        }
        if schema.get("description"):
            parameters["description"] = schema["description"]
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or self.name,
                "parameters": parameters,
            },
        }


class ToolRegistry:
    """Flat catalog of tools exposed to the model.

    The catalog is rebuilt wholesale by ``refresh``; readers always see either
    the previous snapshot or the new one, never a partial update.
    """

    def __init__(self) -> None:
        self._services: tuple[McpService, ...] = ()
        self._tools: dict[str, ToolDescriptor] = {}

    @staticmethod
    def aggregate(
        services: Iterable[McpService],
        enabled_map: Mapping[str, bool] | None = None,
        auto_execute_map: Mapping[str, bool] | None = None,
    ) -> list[ToolDescriptor]:
        """Flatten the enabled tools of all enabled services.

        A tool is enabled unless ``enabled_map`` explicitly maps its key to
        False. Raises ToolNameConflict if two enabled services expose the
        same enabled tool name.
        """
        enabled_map = enabled_map or {}
        auto_execute_map = auto_execute_map or {}
        descriptors: list[ToolDescriptor] = []
        owners: dict[str, list[str]] = {}

        for service in services:
            if not service.enabled:
                logger.debug("service_disabled_skipped", service_id=service.id)
                continue
            for tool in service.tools:
                name = tool.get("name")
                if not name:
                    continue
                key = tool_key(service.id, name)
                if enabled_map.get(key) is False:
                    logger.debug("tool_disabled_skipped", tool_key=key)
                    continue
                owners.setdefault(name, []).append(service.id)
                descriptors.append(
                    ToolDescriptor(
                        name=name,
                        service_id=service.id,
                        service_name=service.name,
                        json_schema=tool.get("inputSchema") or {},
                        description=tool.get("description") or "",
                        enabled=True,
                        auto_execute=auto_execute_map.get(key) is True,
                    )
                )

        conflicts = {name: ids for name, ids in owners.items() if len(ids) > 1}
        if conflicts:
            raise ToolNameConflict(conflicts)
        return descriptors

    def refresh(
        self,
        services: Iterable[McpService],
        enabled_map: Mapping[str, bool] | None = None,
        auto_execute_map: Mapping[str, bool] | None = None,
    ) -> list[ToolDescriptor]:
        services = tuple(services)
        descriptors = self.aggregate(services, enabled_map, auto_execute_map)
        self._services = services
        self._tools = {d.name: d for d in descriptors}
        logger.info(
            "tool_registry_refreshed",
            services=len(services),
            tools=len(descriptors),
        )
        return descriptors

    def find_owner(self, tool_name: str) -> str | None:
        """Service that provides ``tool_name`` in the current catalog.

        Disabled tools and tools of disabled services have no owner.
        """
        descriptor = self._tools.get(tool_name)
        return descriptor.service_id if descriptor else None

    def owner_label(self, tool_name: str) -> str | None:
        """Display name of the owning service, resolved through ``find_owner``."""
        service = self.service(self.find_owner(tool_name) or "")
        return service.name if service else None

    def service(self, service_id: str) -> McpService | None:
        return next((s for s in self._services if s.id == service_id), None)

    def services(self) -> list[McpService]:
        return list(self._services)

    def get(self, tool_name: str) -> ToolDescriptor | None:
        return self._tools.get(tool_name)

    def schema_for(self, tool_name: str) -> dict[str, Any] | None:
        """Declared input schema of a catalog tool, if any."""
        descriptor = self._tools.get(tool_name)
        return (descriptor.json_schema or None) if descriptor else None

    def all_tools(self) -> list[ToolDescriptor]:
        return list(self._tools.values())

    def catalog(self) -> list[dict[str, Any]]:
        """Tool definitions sent to the model."""
        return [d.to_api_dict() for d in self._tools.values()]

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())
