from __future__ import annotations

import asyncio
import os
from typing import Any

from tote.backends.base import (
    BackendExecutionError,
    BackendProcessError,
    ChatMessage,
    ModelGateway,
    ModelResponse,
    ToolCallRequest,
    ToolDeclaration,
    payload_field,
)


class OpenAIChatBackend(ModelGateway):
    """Chat-completions gateway built on the OpenAI SDK.

    ``base_url`` points the client at any OpenAI-compatible server, e.g. a
    local LM Studio instance.
    """

    def __init__(
        self,
        *,
        model: str = "gpt-4o",
        base_url: str | None = None,
        api_key_env: str = "OPENAI_API_KEY",
        temperature: float | None = 0.0,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.base_url = base_url or None
        self.api_key_env = api_key_env
        self.temperature = temperature
        self._client: Any | None = client

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            from openai import OpenAI
        except ImportError as exc:
            raise BackendProcessError(
                "The openai package is not installed.", backend="openai", retriable=False
            ) from exc

        api_key = os.environ.get(self.api_key_env)
        if not api_key and self.base_url:
            # Local OpenAI-compatible servers accept any non-empty key.
            api_key = "local"
        try:
            self._client = OpenAI(api_key=api_key, base_url=self.base_url)
        except Exception as exc:
            raise BackendProcessError(
                f"Could not create OpenAI client: {exc}", backend="openai", retriable=False
            ) from exc
        return self._client

    @staticmethod
    def build_messages(messages: list[ChatMessage]) -> list[dict[str, str]]:
        return [{"role": message.role, "content": message.content} for message in messages]

    @staticmethod
    def build_tools(tools: list[ToolDeclaration] | None) -> list[dict[str, Any]]:
        if not tools:
            return []
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    @staticmethod
    def parse_response(payload: Any) -> ModelResponse:
        choices = payload_field(payload, "choices") or []
        if not choices:
            return ModelResponse()
        message = payload_field(choices[0], "message")
        content = payload_field(message, "content")
        tool_calls: list[ToolCallRequest] = []
        for index, raw_call in enumerate(payload_field(message, "tool_calls") or []):
            function = payload_field(raw_call, "function")
            name = payload_field(function, "name")
            if not isinstance(name, str) or not name:
                continue
            arguments = payload_field(function, "arguments")
            tool_calls.append(
                ToolCallRequest(
                    id=str(payload_field(raw_call, "id") or f"call_{index}"),
                    name=name,
                    arguments=arguments if isinstance(arguments, str) else "{}",
                )
            )
        return ModelResponse(
            content=content if isinstance(content, str) else None,
            tool_calls=tool_calls,
        )

    async def complete(
        self,
        messages: list[ChatMessage],
        tools: list[ToolDeclaration] | None = None,
    ) -> ModelResponse:
        client = self._ensure_client()
        request: dict[str, Any] = {
            "model": self.model,
            "messages": self.build_messages(messages),
        }
        tool_payload = self.build_tools(tools)
        if tool_payload:
            request["tools"] = tool_payload
        if self.temperature is not None:
            request["temperature"] = self.temperature

        def _request() -> Any:
            return client.chat.completions.create(**request)

        try:
            payload = await asyncio.to_thread(_request)
        except Exception as exc:
            raise BackendExecutionError(
                f"OpenAI chat completion failed: {exc}",
                backend="openai",
                retriable=True,
            ) from exc
        return self.parse_response(payload)
