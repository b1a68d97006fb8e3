from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from tote.backends.base import ToolDeclaration

ToolFunction = Callable[[str], Awaitable[str]]


class ToolExecutionError(RuntimeError):
    """Raised by a tool to signal a failed invocation."""


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    name: str
    description: str
    execute: ToolFunction
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object"})

    def declaration(self) -> ToolDeclaration:
        return ToolDeclaration(
            name=self.name,
            description=self.description,
            parameters=dict(self.input_schema),
        )


class ToolRegistry(Mapping[str, ToolDefinition]):
    """Immutable name -> tool mapping, built once and shared by reference."""

    def __init__(self, tools: Iterable[ToolDefinition] = ()) -> None:
        entries: dict[str, ToolDefinition] = {}
        for tool in tools:
            if tool.name in entries:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            entries[tool.name] = tool
        self._tools = MappingProxyType(entries)

    def __getitem__(self, name: str) -> ToolDefinition:
        return self._tools[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return list(self._tools)

    def declarations(self) -> list[ToolDeclaration]:
        return [tool.declaration() for tool in self._tools.values()]

    def describe(self) -> list[str]:
        return [f"- {tool.name}: {tool.description}" for tool in self._tools.values()]


def load_arguments(raw: str | None) -> dict[str, Any]:
    if raw is None or not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ToolExecutionError(f"Invalid JSON arguments: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ToolExecutionError("Tool arguments must be a JSON object.")
    return payload


def require_string(arguments: dict[str, Any], key: str, *, allow_empty: bool = False) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or (not allow_empty and not value.strip()):
        raise ToolExecutionError(f"Missing required string argument '{key}'.")
    return value
