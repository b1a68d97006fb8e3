import pytest

from tote.critic import Critic
from tote.errors import InvalidTransitionError
from tote.models import ErrorType, ObservationResult, Subtask, SubtaskStatus


def _subtask(description: str, tools: list[str] | None = None, dod: list[str] | None = None):
    return Subtask(
        id="s1",
        description=description,
        required_tools=list(tools or []),
        definition_of_done=list(dod or []),
        status=SubtaskStatus.IN_PROGRESS,
    )


def test_implementation_task_with_clean_checks_completes() -> None:
    subtask = _subtask("Add a Multiply method", tools=["edit_file"])

    result = Critic().critique(ObservationResult(), subtask)

    assert result.is_successful is True
    assert result.issues == []
    assert result.error_type is ErrorType.NONE
    assert result.feedback == "Subtask completed successfully"
    assert subtask.status is SubtaskStatus.COMPLETED


def test_build_failure_always_blocks() -> None:
    subtask = _subtask("List the repository layout")

    result = Critic().critique(ObservationResult(build_success=False), subtask)

    assert result.is_successful is False
    assert result.error_type is ErrorType.COMPILATION
    assert "Build failed" in result.issues
    assert result.feedback.startswith("Critical issues found:")
    assert subtask.status is SubtaskStatus.FAILED


def test_test_failure_blocks_only_implementation_tasks() -> None:
    implementation = _subtask("Fix the parser", tools=["edit_file"])
    other = _subtask("Summarize the module layout")

    failed = Critic().critique(ObservationResult(tests_pass=False), implementation)
    passed = Critic().critique(ObservationResult(tests_pass=False), other)

    assert failed.is_successful is False
    assert failed.error_type is ErrorType.LOGIC
    assert passed.is_successful is True
    assert passed.issues == []


def test_lint_failure_blocks_implementation_with_style_tag() -> None:
    subtask = _subtask("Update the README generator", tools=["edit_file"])

    result = Critic().critique(ObservationResult(lint_pass=False), subtask)

    assert result.is_successful is False
    assert result.error_type is ErrorType.STYLE
    assert result.issues == ["Linting failed"]


def test_lint_failure_is_a_warning_for_other_tasks() -> None:
    subtask = _subtask("Review the module layout")

    result = Critic().critique(ObservationResult(lint_pass=False), subtask)

    assert result.is_successful is True
    assert result.error_type is ErrorType.NONE
    assert result.feedback.startswith("Subtask completed with minor warnings")
    assert "non-critical" in result.issues[0]
    assert subtask.status is SubtaskStatus.COMPLETED


def test_create_without_mutation_tool_means_no_work_performed() -> None:
    subtask = _subtask("Create a config loader", tools=["read_file"])

    result = Critic().critique(ObservationResult(), subtask)

    assert result.is_successful is False
    assert result.error_type is ErrorType.LOGIC
    assert any("No actual work performed" in issue for issue in result.issues)


def test_unmet_definition_of_done_blocks_research_task() -> None:
    subtask = _subtask(
        "Research the config format",
        tools=["read_file"],
        dod=["Notes added to docs"],
    )

    result = Critic().critique(ObservationResult(), subtask)

    assert result.is_successful is False
    assert result.issues == ["Definition of done not met: Notes added to docs"]


def test_research_task_ignores_test_and_lint_failures() -> None:
    subtask = _subtask("Investigate the failing import", tools=["read_file"])

    result = Critic().critique(ObservationResult(tests_pass=False, lint_pass=False), subtask)

    assert result.is_successful is True
    assert subtask.status is SubtaskStatus.COMPLETED


def test_research_rule_wins_for_mixed_tasks() -> None:
    subtask = _subtask("Analyze and update the schema", tools=["edit_file"])

    result = Critic().critique(ObservationResult(tests_pass=False), subtask)

    assert result.is_successful is True
    assert result.feedback.startswith("Subtask completed with minor warnings")


def test_keyword_matching_handles_inflections_and_word_boundaries() -> None:
    critic = Critic()

    assert critic.is_implementation_task(_subtask("Creating the tables"))
    assert critic.is_implementation_task(_subtask("Added logging"))
    assert critic.is_research_task(_subtask("Analysis of failures"))
    assert not critic.is_implementation_task(_subtask("Check the address book"))
    assert not critic.is_implementation_task(_subtask("Read the prefix table"))


def test_first_critical_issue_sets_error_type() -> None:
    subtask = _subtask("Implement caching", tools=["read_file"])

    result = Critic().critique(ObservationResult(build_success=False, tests_pass=False), subtask)

    assert result.error_type is ErrorType.COMPILATION
    assert result.issues[:2] == ["Build failed", "Tests failed"]


def test_critique_is_deterministic() -> None:
    observation = ObservationResult(lint_pass=False)
    first = Critic().critique(observation, _subtask("Fix the bug", tools=["bash"]))
    second = Critic().critique(observation, _subtask("Fix the bug", tools=["bash"]))

    assert first == second


def test_completed_subtask_cannot_be_reclassified() -> None:
    subtask = _subtask("Review notes")
    subtask.status = SubtaskStatus.COMPLETED

    with pytest.raises(InvalidTransitionError):
        Critic().critique(ObservationResult(build_success=False), subtask)
