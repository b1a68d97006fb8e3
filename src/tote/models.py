from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from tote.errors import InvalidTransitionError


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


class _StrictEnum(str, Enum):
    @classmethod
    def parse(cls, raw: Any):
        normalized = str(raw).strip().lower() if raw is not None else ""
        for member in cls:
            if member.value == normalized:
                return member
        allowed = ", ".join(member.value for member in cls)
        raise ValueError(f"Unknown {cls.__name__} value {raw!r}; expected one of: {allowed}")


class Complexity(_StrictEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _COMPLEXITY_RANK[self]


_COMPLEXITY_RANK = {Complexity.LOW: 0, Complexity.MEDIUM: 1, Complexity.HIGH: 2}


class SubtaskStatus(_StrictEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    REPLACED = "replaced"
    SKIPPED = "skipped"


RESOLVED_STATUSES = frozenset(
    {SubtaskStatus.COMPLETED, SubtaskStatus.REPLACED, SubtaskStatus.SKIPPED}
)
TERMINAL_STATUSES = RESOLVED_STATUSES


class ErrorType(_StrictEnum):
    NONE = "none"
    COMPILATION = "compilation"
    LOGIC = "logic"
    STYLE = "style"
    ENVIRONMENT = "environment"
    NETWORK = "network"


class AdaptationStrategy(_StrictEnum):
    REPLACE = "replace"
    SUPPLEMENT = "supplement"
    SKIP = "skip"


class StopReason(_StrictEnum):
    COMPLETED = "completed"
    DEADLOCK = "deadlock"
    MAX_ITERATIONS = "max_iterations"
    TIME_LIMIT = "time_limit"
    FAILURE_LIMIT = "failure_limit"
    PLANNING_ERROR = "planning_error"
    SUBTASKS_FAILED = "subtasks_failed"


@dataclass(frozen=True, slots=True)
class Task:
    description: str
    constraints: tuple[str, ...] = ()


@dataclass(slots=True)
class Subtask:
    id: str
    description: str
    definition_of_done: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    priority: int = 0
    complexity: Complexity = Complexity.MEDIUM
    required_tools: list[str] = field(default_factory=list)
    status: SubtaskStatus = SubtaskStatus.PENDING
    attempt_count: int = 0
    is_adapted: bool = False
    started_at: str | None = None
    ended_at: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    def transition(self, status: SubtaskStatus) -> None:
        if self.status in TERMINAL_STATUSES and status != self.status:
            raise InvalidTransitionError(
                f"Subtask {self.id} is {self.status.value}; cannot move to {status.value}."
            )
        self.status = status

    def record_attempt(self) -> int:
        self.attempt_count += 1
        self.started_at = _utcnow_iso()
        self.ended_at = None
        return self.attempt_count

    def mark_ended(self) -> None:
        self.ended_at = _utcnow_iso()

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["complexity"] = self.complexity.value
        payload["status"] = self.status.value
        return payload


@dataclass(slots=True)
class AdaptationRecord:
    failed_subtask_id: str
    strategy: AdaptationStrategy
    reasoning: str = ""
    added_ids: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["strategy"] = self.strategy.value
        return payload


@dataclass(slots=True)
class Plan:
    """Ordered, append-only collection of subtasks for one task run."""

    task_description: str
    constraints: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    adaptations: list[AdaptationRecord] = field(default_factory=list)

    def add(self, subtask: Subtask) -> None:
        if self.get(subtask.id) is not None:
            raise ValueError(f"Duplicate subtask id in plan: {subtask.id}")
        self.subtasks.append(subtask)

    def get(self, subtask_id: str) -> Subtask | None:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def ids(self) -> set[str]:
        return {subtask.id for subtask in self.subtasks}

    def count(self, status: SubtaskStatus) -> int:
        return sum(1 for subtask in self.subtasks if subtask.status == status)

    def is_resolved(self) -> bool:
        return all(subtask.is_resolved for subtask in self.subtasks)

    def unresolved(self) -> list[Subtask]:
        return [subtask for subtask in self.subtasks if not subtask.is_resolved]

    def progress_summary(self) -> str:
        summary = (
            f"Progress: {self.count(SubtaskStatus.COMPLETED)}/{len(self.subtasks)} completed, "
            f"{self.count(SubtaskStatus.IN_PROGRESS)} in progress, "
            f"{self.count(SubtaskStatus.FAILED)} failed"
        )
        replaced = self.count(SubtaskStatus.REPLACED)
        skipped = self.count(SubtaskStatus.SKIPPED)
        if replaced or skipped:
            summary += f", {replaced} replaced, {skipped} skipped"
        return summary

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_description": self.task_description,
            "constraints": list(self.constraints),
            "subtasks": [subtask.to_dict() for subtask in self.subtasks],
            "adaptations": [record.to_dict() for record in self.adaptations],
        }


@dataclass(slots=True)
class ActionResult:
    subtask_id: str
    response: str = ""
    tool_calls_executed: int = 0
    tool_results: list[str] = field(default_factory=list)
    success: bool = False
    rounds: int = 0


@dataclass(slots=True)
class ObservationResult:
    build_success: bool = True
    tests_pass: bool = True
    lint_pass: bool = True
    logs: list[str] = field(default_factory=list)
    metrics: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class CritiqueResult:
    is_successful: bool = False
    issues: list[str] = field(default_factory=list)
    error_type: ErrorType = ErrorType.NONE
    feedback: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["error_type"] = self.error_type.value
        return payload


@dataclass(slots=True)
class IterationResult:
    iteration_number: int
    current_state: str = ""
    selected_subtask: Subtask | None = None
    action_result: ActionResult | None = None
    observation_result: ObservationResult | None = None
    critique: CritiqueResult | None = None
    success: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration_number": self.iteration_number,
            "current_state": self.current_state,
            "selected_subtask_id": (
                self.selected_subtask.id if self.selected_subtask is not None else None
            ),
            "action_result": (
                asdict(self.action_result) if self.action_result is not None else None
            ),
            "observation_result": (
                asdict(self.observation_result) if self.observation_result is not None else None
            ),
            "critique": self.critique.to_dict() if self.critique is not None else None,
            "success": self.success,
            "error": self.error,
        }


@dataclass(slots=True)
class TaskCompletionResult:
    task_description: str
    constraints: list[str] = field(default_factory=list)
    plan: Plan | None = None
    iterations: list[IterationResult] = field(default_factory=list)
    success: bool = False
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    ended_at: datetime | None = None
    total_iterations: int = 0
    stop_reason: StopReason | None = None
    deadlocked_subtask_ids: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_description": self.task_description,
            "constraints": list(self.constraints),
            "plan": self.plan.to_dict() if self.plan is not None else None,
            "iterations": [iteration.to_dict() for iteration in self.iterations],
            "success": self.success,
            "error": self.error,
            "started_at": self.started_at.replace(microsecond=0).isoformat(),
            "ended_at": (
                self.ended_at.replace(microsecond=0).isoformat()
                if self.ended_at is not None
                else None
            ),
            "duration_seconds": round(self.duration_seconds, 3),
            "total_iterations": self.total_iterations,
            "stop_reason": self.stop_reason.value if self.stop_reason is not None else None,
            "deadlocked_subtask_ids": list(self.deadlocked_subtask_ids),
        }
