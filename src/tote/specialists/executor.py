from __future__ import annotations

import logging
from collections.abc import Sequence

from tote.backends.base import BackendExecutionError, ChatMessage, ModelGateway, ToolCallRequest
from tote.models import ActionResult, IterationResult, Subtask
from tote.parsing import format_list
from tote.specialists.base import SpecialistAgent
from tote.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

RESPONSE_SNIPPET_CHARS = 300
TOOL_RESULT_SNIPPET_CHARS = 200
TOOL_RESULT_FEEDBACK_CHARS = 4000


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class Executor(SpecialistAgent):
    """Drives one subtask attempt through a bounded tool-calling loop."""

    role = "executor"
    prompt_file = "executor.md"
    fallback_prompt = """
You are a task execution specialist. Complete the subtask using the available tools.
Always use tools when appropriate; do not just provide instructions.
""".strip()

    def __init__(
        self,
        gateway: ModelGateway,
        tools: ToolRegistry,
        *,
        max_tool_rounds: int = 5,
        history_window: int = 3,
    ) -> None:
        super().__init__(gateway)
        self.tools = tools
        self.max_tool_rounds = max(1, int(max_tool_rounds))
        self.history_window = max(0, int(history_window))

    def execution_system_prompt(self) -> str:
        return f"{self.system_prompt}\n\nAVAILABLE TOOLS:\n" + "\n".join(self.tools.describe())

    @staticmethod
    def summarize_history(history: Sequence[IterationResult]) -> str:
        if not history:
            return ""
        lines = ["RECENT ITERATIONS (oldest first; do not repeat actions that already failed):"]
        for iteration in history:
            subtask = iteration.selected_subtask
            description = subtask.description if subtask is not None else "no subtask"
            outcome = "succeeded" if iteration.success else "failed"
            action = iteration.action_result
            tool_calls = action.tool_calls_executed if action is not None else 0
            lines.append(
                f"- Iteration {iteration.iteration_number}: {description} -> {outcome} "
                f"({tool_calls} tool calls)"
            )
            if action is not None and action.response:
                lines.append(f"  Response: {_truncate(action.response, RESPONSE_SNIPPET_CHARS)}")
            if action is not None and action.tool_results:
                snippets = [
                    _truncate(result, TOOL_RESULT_SNIPPET_CHARS) for result in action.tool_results
                ]
                lines.append("  Tool results: " + " | ".join(snippets))
            if iteration.critique is not None and iteration.critique.feedback:
                lines.append(f"  Feedback: {iteration.critique.feedback}")
            if iteration.error:
                lines.append(f"  Error: {iteration.error}")
        return "\n".join(lines)

    def build_prompt(self, subtask: Subtask, recent_history: Sequence[IterationResult]) -> str:
        window = list(recent_history)[-self.history_window :] if self.history_window else []
        prompt = f"""Execute the following subtask:

SUBTASK: {subtask.description}
DEFINITION OF DONE: {format_list(subtask.definition_of_done)}
REQUIRED TOOLS: {format_list(subtask.required_tools)}

Use the available tools to complete this subtask. Be specific and thorough.
Focus on meeting all the Definition of Done criteria."""
        summary = self.summarize_history(window)
        if summary:
            prompt = f"{prompt}\n\n{summary}"
        return prompt

    async def _run_tool_call(self, call: ToolCallRequest) -> tuple[str, bool, bool]:
        """Return the result line, whether a registered tool ran, and whether it failed."""
        tool = self.tools.get(call.name)
        if tool is None:
            LOGGER.warning("Model requested unknown tool %s", call.name)
            return f"{call.name}: Error - Tool not found", False, True
        try:
            output = await tool.execute(call.arguments)
        except Exception as exc:
            LOGGER.warning("Tool %s failed: %s", call.name, exc)
            return f"{call.name}: Error - {exc}", True, True
        return f"{call.name}: {output}", True, False

    @staticmethod
    def _assistant_turn(text: str, calls: list[ToolCallRequest]) -> str:
        requested = "\n".join(f"- {call.name}({call.arguments})" for call in calls)
        header = f"{text}\n\n" if text else ""
        return f"{header}Requested tool calls:\n{requested}"

    @staticmethod
    def _results_turn(results: list[str]) -> str:
        rendered = "\n".join(
            f"- {_truncate_block(result, TOOL_RESULT_FEEDBACK_CHARS)}" for result in results
        )
        return (
            "Tool execution results:\n"
            f"{rendered}\n\n"
            "Decide your next action: call more tools to continue, retry differently if "
            "something failed, or reply with a short summary and no tool calls if the "
            "subtask is complete."
        )

    async def execute(
        self,
        subtask: Subtask,
        recent_history: Sequence[IterationResult] = (),
    ) -> ActionResult:
        result = ActionResult(subtask_id=subtask.id)
        messages = self.conversation(
            self.build_prompt(subtask, recent_history),
            system_prompt=self.execution_system_prompt(),
        )
        declarations = self.tools.declarations()
        texts: list[str] = []
        final_text = ""
        concluded = False
        tool_failed = False

        for round_number in range(1, self.max_tool_rounds + 1):
            result.rounds = round_number
            try:
                response = await self.gateway.complete(messages, declarations)
            except BackendExecutionError as exc:
                LOGGER.warning("Model call failed during subtask %s: %s", subtask.id, exc)
                concluded = True
                break

            if response.text:
                texts.append(response.text)
            if not response.has_tool_calls:
                final_text = response.text
                concluded = True
                break

            round_results: list[str] = []
            for call in response.tool_calls:
                line, executed, failed = await self._run_tool_call(call)
                if executed:
                    result.tool_calls_executed += 1
                tool_failed = tool_failed or failed
                round_results.append(line)
            result.tool_results.extend(round_results)
            messages.append(
                ChatMessage(
                    role="assistant",
                    content=self._assistant_turn(response.text, response.tool_calls),
                )
            )
            messages.append(ChatMessage(role="user", content=self._results_turn(round_results)))
        else:
            LOGGER.info(
                "Subtask %s reached the tool round cap (%s)", subtask.id, self.max_tool_rounds
            )

        result.response = "\n\n".join(texts)
        if concluded:
            produced_output = bool(final_text) or result.tool_calls_executed > 0
        else:
            produced_output = result.tool_calls_executed > 0
        result.success = produced_output and not tool_failed
        return result


def _truncate_block(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."
