from __future__ import annotations

import fnmatch
import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from tote.models import ActionResult, ObservationResult
from tote.tools.registry import ToolDefinition
from tote.tools.validation import BUILD_TOOL, LINT_TOOL, TEST_TOOL

LOGGER = logging.getLogger(__name__)


class Observer:
    """Runs build, lint and test checks against the working tree.

    Absence of any project descriptor means there is nothing to verify, so all
    checks pass. Lint and test are permissive: a check that cannot be invoked
    counts as passing. A build that cannot be invoked counts as failing.
    """

    def __init__(
        self,
        root: Path,
        tools: Mapping[str, ToolDefinition],
        *,
        descriptor_patterns: list[str],
        excluded_dirs: list[str],
    ) -> None:
        self.root = root.resolve()
        self.tools = tools
        self.descriptor_patterns = list(descriptor_patterns)
        self.excluded_dirs = set(excluded_dirs)

    def _is_descriptor(self, filename: str) -> bool:
        return any(fnmatch.fnmatch(filename, pattern) for pattern in self.descriptor_patterns)

    def find_project_files(self) -> list[Path]:
        found: list[Path] = []
        try:
            for current, dirnames, filenames in os.walk(self.root):
                dirnames[:] = sorted(name for name in dirnames if name not in self.excluded_dirs)
                for filename in sorted(filenames):
                    if self._is_descriptor(filename):
                        found.append(Path(current) / filename)
        except OSError as exc:
            LOGGER.warning("Error finding project files: %s", exc)
        return sorted(found, key=lambda path: (len(path.relative_to(self.root).parts), str(path)))

    @staticmethod
    def _parse_validation_payload(raw: str) -> tuple[bool, str]:
        payload: Any = json.loads(raw)
        if not isinstance(payload, dict) or not isinstance(payload.get("Success"), bool):
            raise ValueError("Validation result is missing a boolean 'Success' field.")
        return payload["Success"], str(payload.get("Error") or "")

    async def _run_check(self, tool_name: str, arguments: dict[str, Any]) -> tuple[bool, str]:
        raw = await self.tools[tool_name].execute(json.dumps(arguments))
        return self._parse_validation_payload(raw)

    async def observe(self, action_result: ActionResult) -> ObservationResult:
        observation = ObservationResult(
            metrics={
                "tool_calls_executed": action_result.tool_calls_executed,
                "response_length": len(action_result.response or ""),
            }
        )
        project_files = self.find_project_files()
        if not project_files:
            observation.logs.append("No project files found, skipping validation checks")
            return observation

        project_path = project_files[0].relative_to(self.root).as_posix()
        LOGGER.info("Running validation checks on %s", project_path)

        if BUILD_TOOL not in self.tools:
            observation.logs.append("Build check skipped: no build tool registered")
        else:
            try:
                passed, error = await self._run_check(BUILD_TOOL, {"project_path": project_path})
                observation.build_success = passed
                if not passed:
                    observation.logs.append(f"Build failed: {error}")
            except Exception as exc:
                observation.build_success = False
                observation.logs.append(f"Build check failed: {exc}")

        if LINT_TOOL not in self.tools:
            observation.logs.append("Lint check skipped: no lint tool registered")
        else:
            try:
                passed, error = await self._run_check(
                    LINT_TOOL, {"project_path": project_path, "verify_only": True}
                )
                observation.lint_pass = passed
                if not passed:
                    observation.logs.append(f"Linting issues found: {error}")
            except Exception as exc:
                observation.lint_pass = True
                observation.logs.append(f"Lint check skipped: {exc}")

        if TEST_TOOL not in self.tools:
            observation.logs.append("Test check skipped: no test tool registered")
        else:
            try:
                passed, error = await self._run_check(TEST_TOOL, {"project_path": project_path})
                observation.tests_pass = passed
                if not passed:
                    observation.logs.append(f"Tests failed: {error}")
            except Exception as exc:
                observation.tests_pass = True
                observation.logs.append(f"Test check skipped: {exc}")

        return observation
