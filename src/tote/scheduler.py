from __future__ import annotations

from tote.models import RESOLVED_STATUSES, Plan, Subtask, SubtaskStatus


def _dependencies_resolved(plan: Plan, subtask: Subtask) -> bool:
    for dep_id in subtask.dependencies:
        dependency = plan.get(dep_id)
        if dependency is None or dependency.status not in RESOLVED_STATUSES:
            return False
    return True


def eligible_subtasks(plan: Plan) -> list[Subtask]:
    """Pending subtasks whose dependencies are all resolved, in scheduling order."""
    ready = [
        subtask
        for subtask in plan.subtasks
        if subtask.status == SubtaskStatus.PENDING and _dependencies_resolved(plan, subtask)
    ]
    # sorted() is stable, so insertion order breaks the remaining ties.
    return sorted(ready, key=lambda subtask: (subtask.priority, subtask.complexity.rank))


def select_next(plan: Plan) -> Subtask | None:
    ready = eligible_subtasks(plan)
    if not ready:
        return None
    return ready[0]


def blocked_subtasks(plan: Plan) -> list[Subtask]:
    """Pending subtasks whose dependencies cannot resolve from the current plan state."""
    if eligible_subtasks(plan):
        return []
    return [subtask for subtask in plan.unresolved() if subtask.status == SubtaskStatus.PENDING]
