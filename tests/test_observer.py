import asyncio
import json
from pathlib import Path

from tote.config import ProjectConfig
from tote.models import ActionResult
from tote.observer import Observer
from tote.tools import BUILD_TOOL, LINT_TOOL, TEST_TOOL, ToolDefinition, ToolExecutionError


class RecordingValidator:
    def __init__(self, name: str, *, success: bool = True, error: str = "") -> None:
        self.name = name
        self.success = success
        self.error = error
        self.calls: list[dict] = []

    async def __call__(self, raw: str) -> str:
        self.calls.append(json.loads(raw))
        return json.dumps({"Success": self.success, "ExitCode": 0, "Error": self.error})

    def tool(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.name, execute=self)


async def _explode(raw: str) -> str:
    _ = raw
    raise ToolExecutionError("tool crashed")


def _observer(root: Path, tools: list[ToolDefinition]) -> Observer:
    project = ProjectConfig()
    return Observer(
        root,
        {tool.name: tool for tool in tools},
        descriptor_patterns=project.descriptor_patterns,
        excluded_dirs=project.excluded_dirs,
    )


def _action() -> ActionResult:
    return ActionResult(subtask_id="s1", response="done", tool_calls_executed=2, success=True)


def test_no_project_descriptor_means_all_checks_pass(tmp_path: Path) -> None:
    build = RecordingValidator(BUILD_TOOL, success=False)
    observer = _observer(tmp_path, [build.tool()])

    observation = asyncio.run(observer.observe(_action()))

    assert observation.build_success is True
    assert observation.tests_pass is True
    assert observation.lint_pass is True
    assert build.calls == []
    assert observation.logs == ["No project files found, skipping validation checks"]
    assert observation.metrics == {"tool_calls_executed": 2, "response_length": 4}


def test_checks_run_against_shallowest_descriptor(tmp_path: Path) -> None:
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "setup.py").write_text("", encoding="utf-8")
    (tmp_path / "pyproject.toml").write_text("", encoding="utf-8")
    (tmp_path / "node_modules" / "dep").mkdir(parents=True)
    (tmp_path / "node_modules" / "dep" / "package.json").write_text("{}", encoding="utf-8")
    build = RecordingValidator(BUILD_TOOL)
    lint = RecordingValidator(LINT_TOOL)
    tests = RecordingValidator(TEST_TOOL)
    observer = _observer(tmp_path, [build.tool(), lint.tool(), tests.tool()])

    observation = asyncio.run(observer.observe(_action()))

    assert [path.name for path in observer.find_project_files()] == ["pyproject.toml", "setup.py"]
    assert build.calls == [{"project_path": "pyproject.toml"}]
    assert lint.calls == [{"project_path": "pyproject.toml", "verify_only": True}]
    assert tests.calls == [{"project_path": "pyproject.toml"}]
    assert observation.build_success and observation.lint_pass and observation.tests_pass


def test_failed_checks_are_recorded(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text("", encoding="utf-8")
    build = RecordingValidator(BUILD_TOOL, success=False, error="SyntaxError")
    lint = RecordingValidator(LINT_TOOL, success=False, error="E501")
    tests = RecordingValidator(TEST_TOOL, success=False, error="1 failed")
    observer = _observer(tmp_path, [build.tool(), lint.tool(), tests.tool()])

    observation = asyncio.run(observer.observe(_action()))

    assert observation.build_success is False
    assert observation.lint_pass is False
    assert observation.tests_pass is False
    assert "Build failed: SyntaxError" in observation.logs
    assert "Linting issues found: E501" in observation.logs
    assert "Tests failed: 1 failed" in observation.logs


def test_build_that_cannot_run_fails_but_lint_and_tests_are_permissive(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text("", encoding="utf-8")
    tools = [
        ToolDefinition(name=name, description=name, execute=_explode)
        for name in (BUILD_TOOL, LINT_TOOL, TEST_TOOL)
    ]
    observer = _observer(tmp_path, tools)

    observation = asyncio.run(observer.observe(_action()))

    assert observation.build_success is False
    assert observation.lint_pass is True
    assert observation.tests_pass is True
    assert "Build check failed: tool crashed" in observation.logs
    assert "Lint check skipped: tool crashed" in observation.logs
    assert "Test check skipped: tool crashed" in observation.logs


def test_unregistered_validation_tools_are_skipped(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text("", encoding="utf-8")
    observer = _observer(tmp_path, [])

    observation = asyncio.run(observer.observe(_action()))

    assert observation.build_success and observation.lint_pass and observation.tests_pass
    assert "Build check skipped: no build tool registered" in observation.logs


def test_malformed_validation_payload_counts_as_unrunnable(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text("", encoding="utf-8")

    async def _garbage(raw: str) -> str:
        _ = raw
        return "not json"

    observer = _observer(tmp_path, [ToolDefinition(BUILD_TOOL, "build", _garbage)])

    observation = asyncio.run(observer.observe(_action()))

    assert observation.build_success is False
