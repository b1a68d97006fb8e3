from __future__ import annotations

import logging

from tote.backends.base import BackendExecutionError
from tote.errors import PlanningError
from tote.models import Plan
from tote.parsing import (
    SubtaskParseError,
    format_list,
    load_json_object,
    parse_subtask,
    subtask_entries,
)
from tote.specialists.base import SpecialistAgent

LOGGER = logging.getLogger(__name__)

PLAN_RESPONSE_EXAMPLE = """{
  "subtasks": [
    {
      "id": "subtask_1",
      "description": "Clear description of what needs to be done",
      "definitionOfDone": ["Specific criterion 1", "Specific criterion 2"],
      "dependencies": ["id_of_subtask_that_must_finish_first"],
      "priority": 1,
      "complexity": "low|medium|high",
      "requiredTools": ["tool_name_1", "tool_name_2"]
    }
  ]
}"""


class PlanBuilder(SpecialistAgent):
    """Asks the model to decompose a task into a dependency graph of subtasks."""

    role = "planner"
    prompt_file = "planner.md"
    fallback_prompt = """
You are a helpful task planning assistant. Always respond with valid JSON.
""".strip()

    def build_prompt(self, task: str, constraints: list[str], tool_names: list[str]) -> str:
        return f"""Create a plan to complete the following task.

TASK: {task}

CONSTRAINTS: {format_list(constraints)}

AVAILABLE TOOLS: {format_list(tool_names)}

When planning:
- Research subtasks (understanding formats, reading code or documentation) do not
  require files to exist.
- Implementation subtasks should use edit_file to change code and bash to run commands.
- Use list_files and read_file to explore the codebase.
- Build, test and lint tools validate changes.

Plan structure:
1. Break the task into specific, actionable subtasks.
2. Give each subtask a clear Definition of Done (definitionOfDone).
3. List dependencies between subtasks by id.
4. Prioritize subtasks: lower numbers run first; blocking or enabling work first.
5. Estimate complexity as one of low, medium, high.
6. List the tools each subtask is expected to use (requiredTools).

Respond with one JSON object shaped like this:
{PLAN_RESPONSE_EXAMPLE}"""

    def parse_plan(self, raw_text: str, task: str, constraints: list[str]) -> Plan:
        try:
            payload = load_json_object(raw_text)
            entries = subtask_entries(payload)
        except (ValueError, SubtaskParseError) as exc:
            raise PlanningError(f"Failed to parse task plan: {exc}") from exc
        if not entries:
            raise PlanningError("Task plan contains no subtasks.")

        plan = Plan(task_description=task, constraints=list(constraints))
        for index, entry in enumerate(entries, start=1):
            try:
                subtask = parse_subtask(
                    entry,
                    fallback_id=f"subtask_{index}",
                    default_priority=index,
                )
            except SubtaskParseError as exc:
                raise PlanningError(f"Invalid subtask #{index} in plan: {exc}") from exc
            if subtask.id in plan.ids():
                raise PlanningError(f"Duplicate subtask id in plan: {subtask.id}")
            plan.add(subtask)
        return plan

    async def build(self, task: str, constraints: list[str], tool_names: list[str]) -> Plan:
        prompt = self.build_prompt(task, constraints, tool_names)
        try:
            response = await self.ask(prompt)
        except BackendExecutionError as exc:
            raise PlanningError(f"Failed to generate task plan: {exc}") from exc
        if not response.text:
            raise PlanningError("Failed to generate task plan: empty model response.")
        LOGGER.debug("Raw planning response: %s", response.text)
        return self.parse_plan(response.text, task, constraints)
