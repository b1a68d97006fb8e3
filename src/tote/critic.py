from __future__ import annotations

import re
from dataclasses import dataclass

from tote.models import CritiqueResult, ErrorType, ObservationResult, Subtask, SubtaskStatus

MUTATION_TOOLS = frozenset({"edit_file", "write_file", "bash", "run_command"})
NON_CRITICAL_MARKER = "non-critical"


def _keywords(*stems: str) -> re.Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(stems) + r")\b", re.IGNORECASE)


CREATE = r"creat(?:e|es|ed|ing|ion)"
IMPLEMENT = r"implement(?:s|ed|ing|ation)?"
UPDATE = r"updat(?:e|es|ed|ing)"
MODIFY = r"modif(?:y|ies|ied|ying|ication)"
FIX = r"fix(?:es|ed|ing)?"
ADD = r"add(?:s|ed|ing)?"

IMPLEMENTATION_PATTERN = _keywords(CREATE, IMPLEMENT, UPDATE, MODIFY, FIX, ADD)
RESEARCH_PATTERN = _keywords(
    r"understand(?:s|ing)?",
    r"research(?:es|ed|ing)?",
    r"analy[sz](?:e|es|ed|ing|is)",
    r"investigat(?:e|es|ed|ing|ion)",
)
EVIDENCE_PATTERN = _keywords(IMPLEMENT, CREATE)
DOD_WORK_PATTERN = _keywords(CREATE, IMPLEMENT, ADD, MODIFY)


@dataclass(slots=True)
class _Issue:
    message: str
    error_type: ErrorType = ErrorType.NONE
    critical: bool = True


class Critic:
    """Classifies an attempt from its observation and the subtask's shape.

    Pure apart from setting ``subtask.status``: equal inputs always give the
    same verdict and error type.
    """

    def __init__(self, mutation_tools: frozenset[str] = MUTATION_TOOLS) -> None:
        self.mutation_tools = mutation_tools

    def uses_mutation_tool(self, subtask: Subtask) -> bool:
        return any(tool in self.mutation_tools for tool in subtask.required_tools)

    def is_implementation_task(self, subtask: Subtask) -> bool:
        return self.uses_mutation_tool(subtask) or bool(
            IMPLEMENTATION_PATTERN.search(subtask.description)
        )

    @staticmethod
    def is_research_task(subtask: Subtask) -> bool:
        return bool(RESEARCH_PATTERN.search(subtask.description))

    def critique(self, observation: ObservationResult, subtask: Subtask) -> CritiqueResult:
        is_research = self.is_research_task(subtask)
        is_implementation = self.is_implementation_task(subtask)
        work_performed = self.uses_mutation_tool(subtask)

        issues: list[_Issue] = []
        if not observation.build_success:
            issues.append(_Issue("Build failed", ErrorType.COMPILATION))
        if not observation.tests_pass and is_implementation:
            issues.append(_Issue("Tests failed", ErrorType.LOGIC))
        if not observation.lint_pass:
            if is_implementation:
                issues.append(_Issue("Linting failed", ErrorType.STYLE))
            else:
                issues.append(
                    _Issue(
                        f"Linting warnings ({NON_CRITICAL_MARKER} for this task type)",
                        critical=False,
                    )
                )
        if EVIDENCE_PATTERN.search(subtask.description) and not work_performed:
            issues.append(
                _Issue(
                    "No actual work performed: no file-editing or shell tool planned",
                    ErrorType.LOGIC,
                )
            )

        dod_issues = [
            _Issue(f"Definition of done not met: {criterion}", ErrorType.LOGIC)
            for criterion in subtask.definition_of_done
            if DOD_WORK_PATTERN.search(criterion) and not work_performed
        ]
        issues.extend(dod_issues)

        critical = [issue for issue in issues if issue.critical]
        if is_research:
            successful = observation.build_success and not dod_issues
        elif is_implementation:
            successful = (
                observation.build_success
                and observation.tests_pass
                and observation.lint_pass
                and not critical
            )
        else:
            successful = not issues

        result = CritiqueResult(issues=[issue.message for issue in issues])
        if successful or not critical:
            result.is_successful = True
            if issues:
                result.feedback = "Subtask completed with minor warnings: " + ", ".join(
                    issue.message for issue in issues
                )
            else:
                result.feedback = "Subtask completed successfully"
            subtask.transition(SubtaskStatus.COMPLETED)
        else:
            result.is_successful = False
            result.error_type = critical[0].error_type
            result.feedback = "Critical issues found: " + ", ".join(
                issue.message for issue in critical
            )
            subtask.transition(SubtaskStatus.FAILED)
        return result
