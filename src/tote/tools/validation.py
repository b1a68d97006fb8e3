from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from tote.tools.filesystem import Workspace
from tote.tools.process import run_command
from tote.tools.registry import ToolDefinition, ToolExecutionError, load_arguments, require_string

LOGGER = logging.getLogger(__name__)

BUILD_TOOL = "build_project"
TEST_TOOL = "run_tests"
LINT_TOOL = "lint_code"


def _project_dir(workspace: Workspace, raw_path: str) -> Path:
    path = workspace.resolve(raw_path)
    if not path.exists():
        raise ToolExecutionError(f"Project path not found: {raw_path}")
    return path if path.is_dir() else path.parent


def _result_payload(result: dict[str, Any]) -> str:
    succeeded = result["exit_code"] == 0
    error = result["stderr_tail"]
    if not error and not succeeded:
        error = result["stdout_tail"]
    return json.dumps(
        {
            "Success": succeeded,
            "ExitCode": result["exit_code"],
            "Output": result["stdout_tail"],
            "Error": error,
            "Command": result["command"],
        },
        ensure_ascii=False,
        indent=2,
    )


def validation_tools(
    workspace: Workspace,
    *,
    build_command: str,
    test_command: str,
    lint_command: str,
    command_timeout_seconds: float = 300.0,
) -> list[ToolDefinition]:
    def _make(name: str, command: str):
        async def _run(raw: str) -> str:
            arguments = load_arguments(raw)
            cwd = _project_dir(workspace, require_string(arguments, "project_path"))
            if not command.strip():
                raise ToolExecutionError(f"No command configured for {name}.")
            LOGGER.info("%s: running %r in %s", name, command, cwd)
            result = await asyncio.to_thread(
                run_command,
                command,
                cwd,
                timeout_seconds=command_timeout_seconds,
            )
            LOGGER.info("%s: exit code %s", name, result["exit_code"])
            return _result_payload(result)

        return _run

    project_path = {
        "type": "string",
        "description": "Path to the project descriptor (e.g. pyproject.toml) or directory.",
    }
    return [
        ToolDefinition(
            name=BUILD_TOOL,
            description="Build the project to check for compilation errors.",
            execute=_make(BUILD_TOOL, build_command),
            input_schema={
                "type": "object",
                "properties": {"project_path": project_path},
                "required": ["project_path"],
            },
        ),
        ToolDefinition(
            name=TEST_TOOL,
            description="Run the project's test suite.",
            execute=_make(TEST_TOOL, test_command),
            input_schema={
                "type": "object",
                "properties": {"project_path": project_path},
                "required": ["project_path"],
            },
        ),
        ToolDefinition(
            name=LINT_TOOL,
            description="Check code style and syntax with the configured linter.",
            execute=_make(LINT_TOOL, lint_command),
            input_schema={
                "type": "object",
                "properties": {
                    "project_path": project_path,
                    "verify_only": {
                        "type": "boolean",
                        "description": "Only report problems without changing files.",
                    },
                },
                "required": ["project_path"],
            },
        ),
    ]
