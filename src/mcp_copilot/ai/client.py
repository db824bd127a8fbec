"""Chat client abstraction with an OpenAI-compatible backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import httpx
import openai

from mcp_copilot.config import ChatApiConfig
from mcp_copilot.core.errors import ChatTransportError
from mcp_copilot.log import get_logger

logger = get_logger(__name__)


class ChatClient(ABC):
    """Abstract chat-completion backend.

    ``send_turn`` yields ``chat.completion.chunk``-shaped dicts; the caller
    assembles them with a StreamAccumulator.
    """

    @abstractmethod
    def send_turn(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Send the conversation and stream back completion chunks.

        When *tools* is None the tool catalog is omitted from the request.
        Raises ChatTransportError when the endpoint cannot be reached.
        """
        ...


class OpenAIChatClient(ChatClient):
    """OpenAI-compatible completion endpoint via the official SDK."""

    def __init__(self, config: ChatApiConfig, http_client: httpx.AsyncClient | None = None):
        self._config = config
        headers = {"apikey": config.api_key} if config.api_key else {}
        if config.authorization:
            headers["Authorization"] = config.authorization
        self._client = openai.AsyncOpenAI(
            base_url=config.url,
            api_key=config.api_key or "unset",
            timeout=config.timeout,
            max_retries=config.max_retries,
            default_headers=headers,
            http_client=http_client,
        )

    def _request_kwargs(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": messages,
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
            "top_p": self._config.top_p,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return kwargs

    async def send_turn(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        kwargs = self._request_kwargs(messages, tools)
        logger.debug(
            "api_request",
            model=self._config.model,
            message_count=len(messages),
            tools=len(tools or []),
            stream=self._config.stream,
        )
        try:
            if self._config.stream:
                stream = await self._client.chat.completions.create(stream=True, **kwargs)
                async for chunk in stream:
                    yield chunk.model_dump()
            else:
                completion = await self._client.chat.completions.create(**kwargs)
                yield self._completion_to_chunk(completion)
        except openai.OpenAIError as e:
            logger.error("api_request_failed", error=str(e))
            raise ChatTransportError(f"Chat API request failed: {e}") from e

    @staticmethod
    def _completion_to_chunk(completion: Any) -> dict[str, Any]:
        """Turn a non-streamed completion into one equivalent stream chunk."""
        if not completion.choices:
            return {"choices": []}
        choice = completion.choices[0]
        message = choice.message
        delta: dict[str, Any] = {"role": "assistant", "content": message.content}
        if message.tool_calls:
            delta["tool_calls"] = [
                {
                    "index": i,
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.function.name,
                        "arguments": call.function.arguments,
                    },
                }
                for i, call in enumerate(message.tool_calls)
            ]
        return {"choices": [{"index": 0, "delta": delta, "finish_reason": choice.finish_reason}]}

    async def ping(self) -> str:
        """Send a one-line request and return the reply text."""
        try:
            completion = await self._client.chat.completions.create(
                model=self._config.model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=8,
            )
        except openai.OpenAIError as e:
            raise ChatTransportError(f"Chat API connection test failed: {e}") from e
        logger.info("api_ping_ok", model=self._config.model)
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""
