"""Helpers that turn free-form model output into plan records."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from typing import Any

from tote.models import Complexity, Subtask

FENCED_JSON_PATTERN = re.compile(r"```json[^\n]*\n(.*?)```", re.IGNORECASE | re.DOTALL)
FENCED_BLOCK_PATTERN = re.compile(r"```[^\n]*\n(.*?)```", re.DOTALL)


class SubtaskParseError(ValueError):
    """Raised when a subtask entry in a model payload is unusable."""


def extract_json_payload(text: str | None) -> str:
    """Return the JSON text embedded in ``text``.

    A ```json fenced block wins; otherwise the first fenced block whose body
    looks like a JSON object; otherwise the whole trimmed text.
    """
    if not text:
        return ""
    match = FENCED_JSON_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    for match in FENCED_BLOCK_PATTERN.finditer(text):
        candidate = match.group(1).strip()
        if candidate.startswith("{") and candidate.endswith("}"):
            return candidate
    return text.strip()


def load_json_object(text: str | None) -> dict[str, Any]:
    payload = extract_json_payload(text)
    if not payload:
        raise ValueError("Model returned an empty response.")
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Model returned invalid JSON: {exc.msg} ({payload[:200]!r})") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}.")
    return parsed


def _string_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise SubtaskParseError(f"Field '{field_name}' must be a list of strings.")
    items: list[str] = []
    for item in value:
        text = str(item).strip()
        if text:
            items.append(text)
    return items


def _priority(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise SubtaskParseError(f"Invalid priority value: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise SubtaskParseError(f"Invalid priority value: {value!r}") from exc


def parse_subtask(
    payload: Any,
    *,
    fallback_id: str,
    default_priority: int,
    is_adapted: bool = False,
) -> Subtask:
    """Build a pending subtask from one model-supplied entry.

    Execution state (status, attempts, timestamps) is never read from the
    payload.
    """
    if not isinstance(payload, dict):
        raise SubtaskParseError("Subtask entries must be JSON objects.")
    description = str(payload.get("description") or "").strip()
    if not description:
        raise SubtaskParseError("Subtask is missing a description.")
    raw_id = payload.get("id")
    subtask_id = str(raw_id).strip() if raw_id is not None else ""
    raw_complexity = payload.get("complexity", payload.get("estimatedComplexity"))
    if raw_complexity is None or raw_complexity == "":
        complexity = Complexity.MEDIUM
    else:
        try:
            complexity = Complexity.parse(raw_complexity)
        except ValueError as exc:
            raise SubtaskParseError(str(exc)) from exc
    return Subtask(
        id=subtask_id or fallback_id,
        description=description,
        definition_of_done=_string_list(payload.get("definitionOfDone"), "definitionOfDone"),
        dependencies=_string_list(payload.get("dependencies"), "dependencies"),
        priority=_priority(payload.get("priority"), default_priority),
        complexity=complexity,
        required_tools=_string_list(payload.get("requiredTools"), "requiredTools"),
        is_adapted=is_adapted,
    )


def subtask_entries(payload: dict[str, Any]) -> list[Any]:
    entries = payload.get("subtasks")
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise SubtaskParseError("Field 'subtasks' must be a list.")
    return entries


def format_list(items: Iterable[str], empty: str = "none") -> str:
    rendered = ", ".join(item for item in items if item)
    return rendered or empty
