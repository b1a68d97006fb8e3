from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tote.tools.process import run_command
from tote.tools.registry import ToolDefinition, ToolExecutionError, load_arguments, require_string

LOGGER = logging.getLogger(__name__)

LIST_SKIP_DIRS = {".git", ".devenv", "__pycache__", ".venv", "node_modules"}
MAX_LISTED_ENTRIES = 2000


class Workspace:
    """Resolves tool paths and refuses anything outside the working directory."""

    def __init__(self, root: Path) -> None:
        resolved = root.resolve()
        if not resolved.is_dir():
            raise NotADirectoryError(f"Working directory does not exist: {resolved}")
        self.root = resolved

    def resolve(self, raw_path: str) -> Path:
        if not raw_path or not raw_path.strip():
            raise ToolExecutionError("Path cannot be empty.")
        candidate = Path(raw_path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        resolved = candidate.resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise ToolExecutionError(
                f"Access denied: path '{raw_path}' resolves outside "
                f"working directory '{self.root}'."
            )
        return resolved

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


def filesystem_tools(
    workspace: Workspace,
    *,
    command_timeout_seconds: float = 300.0,
) -> list[ToolDefinition]:
    async def read_file(raw: str) -> str:
        arguments = load_arguments(raw)
        path = workspace.resolve(require_string(arguments, "path"))
        if not path.is_file():
            raise ToolExecutionError(f"File not found: {arguments['path']}")
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ToolExecutionError(f"Could not read {arguments['path']}: {exc}") from exc

    def _list(base: Path) -> list[str]:
        entries: list[str] = []
        for current, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(name for name in dirnames if name not in LIST_SKIP_DIRS)
            prefix = Path(current).relative_to(base)
            names = [(name, "/") for name in dirnames] + [(name, "") for name in filenames]
            for name, suffix in sorted(names):
                entries.append((prefix / name).as_posix() + suffix)
                if len(entries) >= MAX_LISTED_ENTRIES:
                    return entries
        return entries

    async def list_files(raw: str) -> str:
        arguments = load_arguments(raw)
        raw_path = arguments.get("path")
        base = workspace.root
        if isinstance(raw_path, str) and raw_path:
            base = workspace.resolve(raw_path)
        if not base.is_dir():
            raise ToolExecutionError(f"Directory not found: {raw_path}")
        entries = await asyncio.to_thread(_list, base)
        return json.dumps(entries, ensure_ascii=False)

    def _edit(path: Path, old_str: str, new_str: str) -> str:
        if old_str == new_str:
            raise ToolExecutionError("old_str and new_str must be different.")
        if path.exists():
            content = path.read_text(encoding="utf-8")
            occurrences = content.count(old_str) if old_str else 0
            if occurrences == 0:
                raise ToolExecutionError(f"old_str not found in {workspace.relative(path)}.")
            if occurrences > 1:
                raise ToolExecutionError(
                    f"old_str appears {occurrences} times in {workspace.relative(path)}; "
                    "it must appear exactly once."
                )
            path.write_text(content.replace(old_str, new_str, 1), encoding="utf-8")
            return f"File {workspace.relative(path)} modified successfully"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(new_str, encoding="utf-8")
        return f"File {workspace.relative(path)} created successfully"

    async def edit_file(raw: str) -> str:
        arguments = load_arguments(raw)
        path = workspace.resolve(require_string(arguments, "path"))
        old_str = arguments.get("old_str", "")
        new_str = require_string(arguments, "new_str", allow_empty=True)
        if not isinstance(old_str, str):
            raise ToolExecutionError("Argument 'old_str' must be a string.")
        try:
            result = await asyncio.to_thread(_edit, path, old_str, new_str)
        except OSError as exc:
            raise ToolExecutionError(f"Could not edit {arguments['path']}: {exc}") from exc
        LOGGER.info("edit_file: %s", result)
        return result

    def _status(raw_path: str) -> dict[str, Any]:
        path = workspace.resolve(raw_path)
        if not path.exists():
            return {"Path": raw_path, "Exists": False}
        stat = path.stat()
        return {
            "Path": raw_path,
            "Exists": True,
            "IsFile": path.is_file(),
            "IsDirectory": path.is_dir(),
            "Size": stat.st_size if path.is_file() else None,
            "ModifiedTime": datetime.fromtimestamp(stat.st_mtime, UTC)
            .replace(microsecond=0)
            .isoformat(),
            "Extension": path.suffix or None,
        }

    async def check_file_status(raw: str) -> str:
        arguments = load_arguments(raw)
        paths = arguments.get("file_paths")
        if not isinstance(paths, list) or not paths:
            raise ToolExecutionError("Argument 'file_paths' must be a non-empty list.")
        results = [_status(str(item)) for item in paths]
        return json.dumps(results, ensure_ascii=False, indent=2)

    async def bash(raw: str) -> str:
        arguments = load_arguments(raw)
        command = require_string(arguments, "command")
        LOGGER.info("bash: %s", command)
        result = await asyncio.to_thread(
            run_command,
            command,
            workspace.root,
            timeout_seconds=command_timeout_seconds,
            force_shell=True,
        )
        parts = [result["stdout_tail"]] if result["stdout_tail"] else []
        if result["stderr_tail"]:
            parts.append(f"STDERR: {result['stderr_tail']}")
        output = "\n".join(parts)
        if result["exit_code"] != 0:
            output += f"\nExit code: {result['exit_code']}"
        return output

    return [
        ToolDefinition(
            name="read_file",
            description=(
                "Read the contents of a file by relative path. Do not use this with directories."
            ),
            execute=read_file,
            input_schema=_schema(
                {"path": {"type": "string", "description": "Relative path of the file."}},
                ["path"],
            ),
        ),
        ToolDefinition(
            name="list_files",
            description=(
                "List files and directories recursively at a path. "
                "Defaults to the working directory."
            ),
            execute=list_files,
            input_schema=_schema(
                {"path": {"type": "string", "description": "Optional relative directory."}},
                [],
            ),
        ),
        ToolDefinition(
            name="edit_file",
            description=(
                "Replace 'old_str' with 'new_str' in a text file; 'old_str' must occur exactly "
                "once. If the file does not exist it is created with 'new_str' as content."
            ),
            execute=edit_file,
            input_schema=_schema(
                {
                    "path": {"type": "string", "description": "Relative path of the file."},
                    "old_str": {"type": "string", "description": "Exact text to replace."},
                    "new_str": {"type": "string", "description": "Replacement text."},
                },
                ["path", "old_str", "new_str"],
            ),
        ),
        ToolDefinition(
            name="check_file_status",
            description="Report whether paths exist along with size and modification time.",
            execute=check_file_status,
            input_schema=_schema(
                {
                    "file_paths": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Paths to check.",
                    }
                },
                ["file_paths"],
            ),
        ),
        ToolDefinition(
            name="bash",
            description="Execute a shell command in the working directory and return its output.",
            execute=bash,
            input_schema=_schema(
                {"command": {"type": "string", "description": "Command line to run."}},
                ["command"],
            ),
        ),
    ]
