from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant"]


class BackendExecutionError(RuntimeError):
    """Raised when a model gateway call fails."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.retriable = retriable


class BackendTimeoutError(BackendExecutionError):
    """Raised when a gateway call exceeds the configured timeout."""


class BackendProcessError(BackendExecutionError):
    """Raised when a gateway cannot be constructed or reached at all."""


def payload_field(payload: Any, name: str) -> Any:
    """Read ``name`` from an SDK object or from its plain-dict form."""
    if payload is None:
        return None
    if isinstance(payload, dict):
        return payload.get(name)
    return getattr(payload, name, None)


@dataclass(slots=True)
class ChatMessage:
    role: Role
    content: str


@dataclass(slots=True)
class ToolDeclaration:
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object"})


@dataclass(slots=True)
class ToolCallRequest:
    id: str
    name: str
    arguments: str = "{}"


@dataclass(slots=True)
class ModelResponse:
    content: str | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)

    @property
    def text(self) -> str:
        return (self.content or "").strip()

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ModelGateway(ABC):
    @abstractmethod
    async def complete(
        self,
        messages: list[ChatMessage],
        tools: list[ToolDeclaration] | None = None,
    ) -> ModelResponse:
        """Send a conversation and return text and/or requested tool calls."""
