"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


class ChatApiConfig(BaseModel):
    url: str = "https://api.openai.com/v1"
    api_key: str = ""
    authorization: Optional[str] = None  # sent verbatim as the Authorization header
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1024
    top_p: float = 1.0
    stream: bool = True
    timeout: float = 60.0
    max_retries: int = 0  # retries are owned by the loop, not the SDK


class McpServiceConfig(BaseModel):
    id: str
    name: str
    url: str
    enabled: bool = True


class McpConfig(BaseModel):
    timeout: float = 45.0
    protocol_version: str = "2024-11-05"
    client_name: str = "mcp-copilot"
    client_version: str = "0.1.0"
    state_path: str = "./data/mcp_state.json"
    services: list[McpServiceConfig] = Field(default_factory=list)

    @field_validator("services")
    @classmethod
    def _unique_ids(cls, services: list[McpServiceConfig]) -> list[McpServiceConfig]:
        seen: set[str] = set()
        for service in services:
            if service.id in seen:
                raise ValueError(f"duplicate MCP service id: {service.id}")
            seen.add(service.id)
        return services


class LoopConfig(BaseModel):
    max_recursion_depth: int = Field(default=5, ge=1)
    max_tool_calls_per_turn: int = Field(default=5, ge=1)
    max_message_history: int = Field(default=10, ge=1)
    include_tool_results: bool = True
    max_tool_result_length: int = Field(default=2000, ge=0)  # 0 disables truncation
    resubmit_retries: int = Field(default=2, ge=0)
    retry_backoff: float = Field(default=1.0, ge=0)
    conclusion_retries: int = Field(default=2, ge=0, le=2)
    sufficiency_check: bool = True
    system_prompt: Optional[str] = None


class StorageConfig(BaseModel):
    db_path: str = "./data/mcp_copilot.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    data_dir: str = "./data"
    api: ChatApiConfig = Field(default_factory=ChatApiConfig)
    mcp: McpConfig = Field(default_factory=McpConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Expand ${VAR} and ${VAR:-default}. Unset variables without a default are left as written."""

    def _replace(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        if extra and name in extra:
            return extra[name]
        value = os.environ.get(name)
        if value is not None:
            return value
        return default if default is not None else match.group(0)

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Read YAML, expand variables (${data_dir} may be used by other keys) and validate.

    Raises FileNotFoundError for a missing file and pydantic.ValidationError
    for invalid values.
    """
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    data_dir = str((yaml.safe_load(raw_text) or {}).get("data_dir", "./data"))
    data_dir = _interpolate_env_vars(data_dir)

    data = yaml.safe_load(_interpolate_env_vars(raw_text, extra={"data_dir": data_dir})) or {}
    return AppConfig.model_validate(data)
