from __future__ import annotations

from pathlib import Path

from tote.config import ProjectConfig
from tote.tools.filesystem import Workspace, filesystem_tools
from tote.tools.registry import (
    ToolDefinition,
    ToolExecutionError,
    ToolFunction,
    ToolRegistry,
    load_arguments,
)
from tote.tools.validation import BUILD_TOOL, LINT_TOOL, TEST_TOOL, validation_tools

__all__ = [
    "BUILD_TOOL",
    "LINT_TOOL",
    "TEST_TOOL",
    "ToolDefinition",
    "ToolExecutionError",
    "ToolFunction",
    "ToolRegistry",
    "Workspace",
    "build_default_registry",
    "load_arguments",
]


def build_default_registry(root: Path, project: ProjectConfig) -> ToolRegistry:
    workspace = Workspace(root)
    timeout = float(project.command_timeout_seconds)
    return ToolRegistry(
        [
            *filesystem_tools(workspace, command_timeout_seconds=timeout),
            *validation_tools(
                workspace,
                build_command=project.build_command,
                test_command=project.test_command,
                lint_command=project.lint_command,
                command_timeout_seconds=timeout,
            ),
        ]
    )
