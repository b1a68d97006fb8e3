from __future__ import annotations

import logging

from tote.backends.base import BackendExecutionError, ModelGateway
from tote.errors import AdaptationError
from tote.models import (
    AdaptationRecord,
    AdaptationStrategy,
    CritiqueResult,
    Plan,
    Subtask,
    SubtaskStatus,
)
from tote.parsing import (
    SubtaskParseError,
    format_list,
    load_json_object,
    parse_subtask,
    subtask_entries,
)
from tote.specialists.base import SpecialistAgent

LOGGER = logging.getLogger(__name__)

ADAPTATION_RESPONSE_EXAMPLE = """{
  "strategy": "replace|supplement|skip",
  "reasoning": "Why this strategy fits the failure",
  "subtasks": [
    {
      "id": "new_subtask_id",
      "description": "Alternative or additional work",
      "definitionOfDone": ["Specific criterion"],
      "dependencies": [],
      "priority": 1,
      "complexity": "low|medium|high",
      "requiredTools": ["tool_name"]
    }
  ]
}"""


class PlanAdapter(SpecialistAgent):
    """Asks the model how to route around a subtask that exhausted its attempts.

    Adaptation is best-effort: any failure leaves the plan untouched and the
    subtask failed.
    """

    role = "adapter"
    prompt_file = "adapter.md"
    fallback_prompt = """
You are a plan remediation assistant. Always respond with valid JSON.
""".strip()

    def __init__(self, gateway: ModelGateway, tool_names: list[str] | None = None) -> None:
        super().__init__(gateway)
        self.tool_names = list(tool_names or [])

    def build_prompt(self, plan: Plan, failed_subtask: Subtask, critique: CritiqueResult) -> str:
        return f"""A subtask failed after {failed_subtask.attempt_count} attempts.

FAILED SUBTASK: {failed_subtask.description}
DEFINITION OF DONE: {format_list(failed_subtask.definition_of_done)}
FEEDBACK: {critique.feedback or "none"}
ERROR TYPE: {critique.error_type.value}
ISSUES: {format_list(critique.issues)}

OVERALL TASK: {plan.task_description}
{plan.progress_summary()}

AVAILABLE TOOLS: {format_list(self.tool_names)}

Choose one strategy:
- replace: abandon the failed subtask and add new subtasks that achieve its goal differently.
- supplement: keep the failed subtask as failed and add subtasks that cover the missing work.
- skip: the failed subtask is not required to finish the overall task.

Respond with one JSON object shaped like this:
{ADAPTATION_RESPONSE_EXAMPLE}"""

    @staticmethod
    def _free_id(candidate: str, taken: set[str]) -> str:
        if candidate not in taken:
            return candidate
        suffix = 1
        while f"{candidate}-r{suffix}" in taken:
            suffix += 1
        return f"{candidate}-r{suffix}"

    def parse_adaptation(
        self,
        raw_text: str,
        plan: Plan,
        failed_subtask: Subtask,
    ) -> tuple[AdaptationStrategy, str, list[Subtask]]:
        try:
            payload = load_json_object(raw_text)
            strategy = AdaptationStrategy.parse(payload.get("strategy"))
            entries = subtask_entries(payload)
        except (ValueError, SubtaskParseError) as exc:
            raise AdaptationError(f"Failed to parse adaptation: {exc}") from exc
        reasoning = str(payload.get("reasoning") or "").strip()
        if strategy is AdaptationStrategy.SKIP:
            return strategy, reasoning, []

        taken = plan.ids()
        renamed: dict[str, str] = {}
        new_subtasks: list[Subtask] = []
        for index, entry in enumerate(entries, start=1):
            try:
                subtask = parse_subtask(
                    entry,
                    fallback_id=f"{failed_subtask.id}_fix_{index}",
                    default_priority=failed_subtask.priority,
                    is_adapted=True,
                )
            except SubtaskParseError as exc:
                LOGGER.warning("Ignoring invalid adapted subtask #%s: %s", index, exc)
                continue
            unique_id = self._free_id(subtask.id, taken)
            if unique_id != subtask.id:
                renamed[subtask.id] = unique_id
                subtask.id = unique_id
            taken.add(unique_id)
            new_subtasks.append(subtask)

        for subtask in new_subtasks:
            subtask.dependencies = [renamed.get(dep, dep) for dep in subtask.dependencies]
        if not new_subtasks:
            raise AdaptationError(
                f"Strategy {strategy.value} returned no usable subtasks; adaptation inconclusive."
            )
        return strategy, reasoning, new_subtasks

    def apply(
        self,
        plan: Plan,
        failed_subtask: Subtask,
        strategy: AdaptationStrategy,
        reasoning: str,
        new_subtasks: list[Subtask],
    ) -> AdaptationRecord:
        if strategy is AdaptationStrategy.REPLACE:
            failed_subtask.transition(SubtaskStatus.REPLACED)
        elif strategy is AdaptationStrategy.SKIP:
            failed_subtask.transition(SubtaskStatus.SKIPPED)
        for subtask in new_subtasks:
            plan.add(subtask)
        record = AdaptationRecord(
            failed_subtask_id=failed_subtask.id,
            strategy=strategy,
            reasoning=reasoning,
            added_ids=[subtask.id for subtask in new_subtasks],
        )
        plan.adaptations.append(record)
        return record

    async def adapt(
        self,
        plan: Plan,
        failed_subtask: Subtask,
        critique: CritiqueResult,
    ) -> AdaptationRecord | None:
        prompt = self.build_prompt(plan, failed_subtask, critique)
        try:
            response = await self.ask(prompt)
            if not response.text:
                raise AdaptationError("Empty adaptation response.")
            strategy, reasoning, new_subtasks = self.parse_adaptation(
                response.text, plan, failed_subtask
            )
            record = self.apply(plan, failed_subtask, strategy, reasoning, new_subtasks)
        except (AdaptationError, BackendExecutionError) as exc:
            LOGGER.warning("Plan adaptation for %s failed: %s", failed_subtask.id, exc)
            return None
        except Exception:
            LOGGER.exception("Unexpected error adapting plan for %s", failed_subtask.id)
            return None
        LOGGER.info(
            "Adapted plan for %s with strategy %s (%s new subtasks)",
            failed_subtask.id,
            record.strategy.value,
            len(record.added_ids),
        )
        return record
