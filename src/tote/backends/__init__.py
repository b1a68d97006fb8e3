from tote.backends.anthropic_messages import AnthropicBackend
from tote.backends.base import (
    BackendExecutionError,
    BackendProcessError,
    BackendTimeoutError,
    ChatMessage,
    ModelGateway,
    ModelResponse,
    ToolCallRequest,
    ToolDeclaration,
    payload_field,
)
from tote.backends.openai_chat import OpenAIChatBackend
from tote.backends.resilient import ResilientBackend, RetryPolicy

__all__ = [
    "AnthropicBackend",
    "BackendExecutionError",
    "BackendProcessError",
    "BackendTimeoutError",
    "ChatMessage",
    "ModelGateway",
    "ModelResponse",
    "OpenAIChatBackend",
    "ResilientBackend",
    "RetryPolicy",
    "ToolCallRequest",
    "ToolDeclaration",
    "payload_field",
]
