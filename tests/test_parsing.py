import pytest

from tote.models import Complexity, SubtaskStatus
from tote.parsing import (
    SubtaskParseError,
    extract_json_payload,
    format_list,
    load_json_object,
    parse_subtask,
)


def test_extract_prefers_json_fenced_block() -> None:
    text = 'Here is the plan:\n```python\nprint("x")\n```\n```json\n{"subtasks": []}\n```\nDone.'

    assert extract_json_payload(text) == '{"subtasks": []}'


def test_extract_falls_back_to_object_like_fenced_block() -> None:
    text = 'Plan below\n```\n{"a": 1}\n```'

    assert extract_json_payload(text) == '{"a": 1}'


def test_extract_uses_trimmed_text_without_fences() -> None:
    assert extract_json_payload('  {"a": 1}  \n') == '{"a": 1}'
    assert extract_json_payload(None) == ""


def test_load_json_object_rejects_bad_payloads() -> None:
    with pytest.raises(ValueError, match="empty"):
        load_json_object("   ")
    with pytest.raises(ValueError, match="invalid JSON"):
        load_json_object("not json at all")
    with pytest.raises(ValueError, match="JSON object"):
        load_json_object("[1, 2]")


def test_parse_subtask_reads_model_fields_and_ignores_status() -> None:
    subtask = parse_subtask(
        {
            "id": "write-code",
            "description": "Implement Multiply",
            "definitionOfDone": ["Multiply exists", ""],
            "dependencies": ["research"],
            "priority": "2",
            "estimatedComplexity": "HIGH",
            "requiredTools": "edit_file",
            "status": "completed",
            "attemptCount": 7,
        },
        fallback_id="subtask_1",
        default_priority=1,
    )

    assert subtask.id == "write-code"
    assert subtask.definition_of_done == ["Multiply exists"]
    assert subtask.dependencies == ["research"]
    assert subtask.priority == 2
    assert subtask.complexity is Complexity.HIGH
    assert subtask.required_tools == ["edit_file"]
    assert subtask.status is SubtaskStatus.PENDING
    assert subtask.attempt_count == 0
    assert subtask.is_adapted is False


def test_parse_subtask_applies_defaults() -> None:
    subtask = parse_subtask(
        {"description": "Read the docs"},
        fallback_id="subtask_3",
        default_priority=3,
        is_adapted=True,
    )

    assert subtask.id == "subtask_3"
    assert subtask.priority == 3
    assert subtask.complexity is Complexity.MEDIUM
    assert subtask.is_adapted is True


@pytest.mark.parametrize(
    "payload",
    [
        "not an object",
        {"id": "x"},
        {"description": "ok", "complexity": "enormous"},
        {"description": "ok", "priority": "soon"},
        {"description": "ok", "dependencies": {"a": 1}},
    ],
)
def test_parse_subtask_rejects_invalid_entries(payload: object) -> None:
    with pytest.raises(SubtaskParseError):
        parse_subtask(payload, fallback_id="subtask_1", default_priority=1)


def test_format_list_uses_placeholder_for_empty_input() -> None:
    assert format_list([]) == "none"
    assert format_list(["a", "", "b"]) == "a, b"
