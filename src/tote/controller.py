from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from tote.config import LoopConfig
from tote.critic import Critic
from tote.errors import PlanningError
from tote.models import (
    CritiqueResult,
    ErrorType,
    IterationResult,
    Plan,
    StopReason,
    Subtask,
    SubtaskStatus,
    Task,
    TaskCompletionResult,
)
from tote.observer import Observer
from tote.scheduler import blocked_subtasks, select_next
from tote.specialists.adapter import PlanAdapter
from tote.specialists.executor import Executor
from tote.specialists.planner import PlanBuilder

LOGGER = logging.getLogger(__name__)

ControllerEventHook = Callable[[dict[str, Any]], None]


class CompletionController:
    """Plans a task, then drives execute / observe / critique / adapt until done."""

    def __init__(
        self,
        planner: PlanBuilder,
        executor: Executor,
        observer: Observer,
        critic: Critic,
        adapter: PlanAdapter,
        *,
        tool_names: Sequence[str] = (),
        loop_config: LoopConfig | None = None,
        event_hook: ControllerEventHook | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.planner = planner
        self.executor = executor
        self.observer = observer
        self.critic = critic
        self.adapter = adapter
        self.tool_names = list(tool_names)
        self.loop_config = loop_config or LoopConfig()
        self.event_hook = event_hook
        self.clock = clock
        self.sleep = sleep

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    def _limit_reached(self, plan: Plan, iterations: int, started: float) -> StopReason | None:
        if iterations >= self.loop_config.max_iterations:
            return StopReason.MAX_ITERATIONS
        if self.clock() - started >= self.loop_config.max_execution_time_minutes * 60:
            return StopReason.TIME_LIMIT
        if plan.count(SubtaskStatus.FAILED) > self.loop_config.max_failed_subtasks:
            return StopReason.FAILURE_LIMIT
        return None

    async def _handle_failure(
        self, plan: Plan, subtask: Subtask, critique: CritiqueResult
    ) -> None:
        if subtask.attempt_count < self.loop_config.max_subtask_attempts:
            subtask.transition(SubtaskStatus.PENDING)
            LOGGER.info(
                "Retrying subtask %s (attempt %s/%s)",
                subtask.id,
                subtask.attempt_count,
                self.loop_config.max_subtask_attempts,
            )
            self._emit(
                {
                    "event": "subtask_retry",
                    "subtask_id": subtask.id,
                    "attempt": subtask.attempt_count,
                    "max_attempts": self.loop_config.max_subtask_attempts,
                }
            )
            return

        LOGGER.warning(
            "Subtask %s failed after %s attempts; adapting plan",
            subtask.id,
            subtask.attempt_count,
        )
        self._emit(
            {
                "event": "subtask_failed",
                "subtask_id": subtask.id,
                "attempts": subtask.attempt_count,
                "error_type": critique.error_type.value,
            }
        )
        record = await self.adapter.adapt(plan, subtask, critique)
        if record is not None:
            self._emit(
                {
                    "event": "plan_adapted",
                    "subtask_id": subtask.id,
                    "strategy": record.strategy.value,
                    "added_ids": list(record.added_ids),
                }
            )

    async def _run_iteration(
        self,
        number: int,
        plan: Plan,
        subtask: Subtask,
        history: list[IterationResult],
    ) -> IterationResult:
        record = IterationResult(
            iteration_number=number,
            current_state=plan.progress_summary(),
            selected_subtask=subtask,
        )
        LOGGER.info("Iteration %s: %s (%s)", number, subtask.id, record.current_state)
        self._emit(
            {
                "event": "iteration_started",
                "iteration": number,
                "subtask_id": subtask.id,
                "progress": record.current_state,
            }
        )

        subtask.transition(SubtaskStatus.IN_PROGRESS)
        subtask.record_attempt()
        try:
            record.action_result = await self.executor.execute(subtask, history)
            record.observation_result = await self.observer.observe(record.action_result)
            record.critique = self.critic.critique(record.observation_result, subtask)
            record.success = record.critique.is_successful
        except Exception as exc:
            LOGGER.exception("Iteration %s failed on subtask %s", number, subtask.id)
            record.error = str(exc) or type(exc).__name__
            record.success = False
            record.critique = CritiqueResult(
                is_successful=False,
                issues=[f"Iteration error: {record.error}"],
                error_type=ErrorType.ENVIRONMENT,
                feedback=f"Iteration failed with an exception: {record.error}",
            )
            if subtask.status == SubtaskStatus.IN_PROGRESS:
                subtask.transition(SubtaskStatus.FAILED)
        subtask.mark_ended()

        if not record.success:
            await self._handle_failure(plan, subtask, record.critique)
        if record.error is not None:
            await self.sleep(self.loop_config.iteration_error_backoff_seconds)

        self._emit(
            {
                "event": "iteration_finished",
                "iteration": number,
                "subtask_id": subtask.id,
                "success": record.success,
                "status": subtask.status.value,
                "error": record.error,
            }
        )
        return record

    def _finish(self, result: TaskCompletionResult) -> TaskCompletionResult:
        result.success = result.plan is not None and result.plan.is_resolved()
        result.total_iterations = len(result.iterations)
        result.ended_at = datetime.now(UTC)
        LOGGER.info(
            "Task %s after %s iterations (stop reason: %s)",
            "completed" if result.success else "did not complete",
            result.total_iterations,
            result.stop_reason.value if result.stop_reason else "none",
        )
        self._emit(
            {
                "event": "run_finished",
                "success": result.success,
                "stop_reason": result.stop_reason.value if result.stop_reason else None,
                "iterations": result.total_iterations,
                "duration_seconds": round(result.duration_seconds, 3),
            }
        )
        return result

    async def complete_task(
        self,
        description: str,
        constraints: Sequence[str] | None = None,
    ) -> TaskCompletionResult:
        return await self.run(Task(description=description, constraints=tuple(constraints or ())))

    async def run(self, task: Task) -> TaskCompletionResult:
        constraints = list(task.constraints)
        result = TaskCompletionResult(task_description=task.description, constraints=constraints)
        started = self.clock()

        try:
            plan = await self.planner.build(task.description, constraints, self.tool_names)
        except PlanningError as exc:
            LOGGER.error("Planning failed: %s", exc)
            result.error = str(exc)
            result.stop_reason = StopReason.PLANNING_ERROR
            return self._finish(result)

        result.plan = plan
        LOGGER.info("Created plan with %s subtasks", len(plan.subtasks))
        for subtask in plan.subtasks:
            LOGGER.info("  %s: %s", subtask.id, subtask.description)
        self._emit(
            {
                "event": "plan_created",
                "subtasks": [subtask.id for subtask in plan.subtasks],
            }
        )

        while True:
            if plan.is_resolved():
                result.stop_reason = StopReason.COMPLETED
                break
            if len(result.iterations) >= self.loop_config.max_iterations:
                result.stop_reason = StopReason.MAX_ITERATIONS
                break

            subtask = select_next(plan)
            if subtask is None:
                blocked = [item.id for item in blocked_subtasks(plan)]
                if blocked:
                    LOGGER.warning("Deadlock; blocked subtasks: %s", ", ".join(blocked))
                    result.stop_reason = StopReason.DEADLOCK
                    result.deadlocked_subtask_ids = blocked
                else:
                    failed = [item.id for item in plan.unresolved()]
                    LOGGER.warning("No work left; failed subtasks: %s", ", ".join(failed))
                    result.stop_reason = StopReason.SUBTASKS_FAILED
                break

            record = await self._run_iteration(
                len(result.iterations) + 1, plan, subtask, result.iterations
            )
            result.iterations.append(record)

            if plan.is_resolved():
                continue
            stop = self._limit_reached(plan, len(result.iterations), started)
            if stop is not None:
                result.stop_reason = stop
                LOGGER.warning("Stopping run: %s", stop.value)
                self._emit(
                    {
                        "event": "run_stopped",
                        "reason": stop.value,
                        "iteration": len(result.iterations),
                    }
                )
                break

        return self._finish(result)
