from __future__ import annotations

import asyncio
import json
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


class AnthropicBackend(ModelGateway):
    """Messages-API gateway built on the Anthropic SDK.

    System messages are lifted into the top-level ``system`` field and
    consecutive turns from the same role are merged, since the API expects
    user and assistant turns to alternate. ``tool_use`` blocks in the reply
    become ``ToolCallRequest`` values with JSON-encoded arguments.
    """

    def __init__(
        self,
        *,
        model: str = "claude-sonnet-4-5",
        base_url: str | None = None,
        api_key_env: str = "ANTHROPIC_API_KEY",
        temperature: float | None = 0.0,
        max_tokens: int = 4096,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.base_url = base_url or None
        self.api_key_env = api_key_env
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client: Any | None = client

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            from anthropic import Anthropic
        except ImportError as exc:
            raise BackendProcessError(
                "The anthropic package is not installed.", backend="anthropic", retriable=False
            ) from exc

        try:
            self._client = Anthropic(
                api_key=os.environ.get(self.api_key_env),
                base_url=self.base_url,
            )
        except Exception as exc:
            raise BackendProcessError(
                f"Could not create Anthropic client: {exc}", backend="anthropic", retriable=False
            ) from exc
        return self._client

    @staticmethod
    def build_messages(messages: list[ChatMessage]) -> tuple[str, list[dict[str, str]]]:
        system_parts: list[str] = []
        turns: list[dict[str, str]] = []
        for message in messages:
            if message.role == "system":
                system_parts.append(message.content)
                continue
            if turns and turns[-1]["role"] == message.role:
                turns[-1]["content"] += "\n\n" + message.content
                continue
            turns.append({"role": message.role, "content": message.content})
        return "\n\n".join(system_parts), turns

    @staticmethod
    def build_tools(tools: list[ToolDeclaration] | None) -> list[dict[str, Any]]:
        if not tools:
            return []
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    @staticmethod
    def parse_response(payload: Any) -> ModelResponse:
        texts: list[str] = []
        tool_calls: list[ToolCallRequest] = []
        for index, block in enumerate(payload_field(payload, "content") or []):
            kind = payload_field(block, "type")
            if kind == "text":
                text = payload_field(block, "text")
                if isinstance(text, str):
                    texts.append(text)
            elif kind == "tool_use":
                name = payload_field(block, "name")
                if not isinstance(name, str) or not name:
                    continue
                arguments = payload_field(block, "input")
                tool_calls.append(
                    ToolCallRequest(
                        id=str(payload_field(block, "id") or f"toolu_{index}"),
                        name=name,
                        arguments=json.dumps(arguments if isinstance(arguments, dict) else {}),
                    )
                )
        return ModelResponse(content="".join(texts) or None, tool_calls=tool_calls)

    async def complete(
        self,
        messages: list[ChatMessage],
        tools: list[ToolDeclaration] | None = None,
    ) -> ModelResponse:
        client = self._ensure_client()
        system, turns = self.build_messages(messages)
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": turns,
        }
        if system:
            request["system"] = system
        tool_payload = self.build_tools(tools)
        if tool_payload:
            request["tools"] = tool_payload
        if self.temperature is not None:
            request["temperature"] = self.temperature

        def _request() -> Any:
            return client.messages.create(**request)

        try:
            payload = await asyncio.to_thread(_request)
        except Exception as exc:
            raise BackendExecutionError(
                f"Anthropic message request failed: {exc}",
                backend="anthropic",
                retriable=True,
            ) from exc
        return self.parse_response(payload)
