import asyncio
import json
import subprocess
from pathlib import Path
from typing import Any

import pytest

from tote.config import ProjectConfig
from tote.tools import (
    BUILD_TOOL,
    LINT_TOOL,
    TEST_TOOL,
    ToolDefinition,
    ToolExecutionError,
    ToolRegistry,
    build_default_registry,
)
from tote.tools.process import run_command


def _call(registry: ToolRegistry, name: str, arguments: dict[str, Any]) -> str:
    return asyncio.run(registry[name].execute(json.dumps(arguments)))


def _fake_completed(observed: dict[str, Any], *, returncode: int = 0, stdout: str = "ok\n"):
    def fake_run(*args: Any, **kwargs: Any) -> subprocess.CompletedProcess[str]:
        observed["payload"] = args[0]
        observed["shell"] = kwargs.get("shell")
        observed["cwd"] = kwargs.get("cwd")
        return subprocess.CompletedProcess(
            args=args[0], returncode=returncode, stdout=stdout, stderr=""
        )

    return fake_run


def test_default_registry_exposes_file_shell_and_validation_tools(tmp_path: Path) -> None:
    registry = build_default_registry(tmp_path, ProjectConfig())

    assert registry.names() == [
        "read_file",
        "list_files",
        "edit_file",
        "check_file_status",
        "bash",
        BUILD_TOOL,
        TEST_TOOL,
        LINT_TOOL,
    ]
    declarations = {item.name: item for item in registry.declarations()}
    assert list(declarations) == registry.names()
    assert declarations["edit_file"].parameters["required"] == ["path", "old_str", "new_str"]


def test_registry_rejects_duplicate_names() -> None:
    async def _noop(raw: str) -> str:
        return raw

    tool = ToolDefinition(name="same", description="x", execute=_noop)
    with pytest.raises(ValueError):
        ToolRegistry([tool, tool])


def test_edit_file_creates_then_replaces_unique_text(tmp_path: Path) -> None:
    registry = build_default_registry(tmp_path, ProjectConfig())

    created = _call(
        registry, "edit_file", {"path": "src/calc.py", "old_str": "", "new_str": "x = 1\n"}
    )
    modified = _call(
        registry, "edit_file", {"path": "src/calc.py", "old_str": "x = 1", "new_str": "x = 2"}
    )

    assert created == "File src/calc.py created successfully"
    assert modified == "File src/calc.py modified successfully"
    assert (tmp_path / "src" / "calc.py").read_text(encoding="utf-8") == "x = 2\n"
    assert _call(registry, "read_file", {"path": "src/calc.py"}) == "x = 2\n"


def test_edit_file_requires_exactly_one_match(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("dup dup", encoding="utf-8")
    registry = build_default_registry(tmp_path, ProjectConfig())

    with pytest.raises(ToolExecutionError, match="exactly once"):
        _call(registry, "edit_file", {"path": "a.txt", "old_str": "dup", "new_str": "one"})
    with pytest.raises(ToolExecutionError, match="not found"):
        _call(registry, "edit_file", {"path": "a.txt", "old_str": "zzz", "new_str": "one"})


def test_paths_outside_working_directory_are_refused(tmp_path: Path) -> None:
    workdir = tmp_path / "work"
    workdir.mkdir()
    (tmp_path / "secret.txt").write_text("secret", encoding="utf-8")
    registry = build_default_registry(workdir, ProjectConfig())

    with pytest.raises(ToolExecutionError, match="Access denied"):
        _call(registry, "read_file", {"path": "../secret.txt"})


def test_list_files_skips_vendor_directories(tmp_path: Path) -> None:
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "mod.py").write_text("", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "x.js").write_text("", encoding="utf-8")
    registry = build_default_registry(tmp_path, ProjectConfig())

    listing = json.loads(_call(registry, "list_files", {}))

    assert listing == ["pkg/", "pkg/mod.py"]


def test_list_files_prunes_nested_vendor_directories_and_caps_entries(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    (tmp_path / "pkg" / ".git").mkdir(parents=True)
    (tmp_path / "pkg" / ".git" / "HEAD").write_text("", encoding="utf-8")
    (tmp_path / "pkg" / "mod.py").write_text("", encoding="utf-8")
    (tmp_path / "readme.md").write_text("", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    for index in range(50):
        (tmp_path / "node_modules" / f"dep{index}.js").write_text("", encoding="utf-8")
    registry = build_default_registry(tmp_path, ProjectConfig())

    full = json.loads(_call(registry, "list_files", {}))
    monkeypatch.setattr("tote.tools.filesystem.MAX_LISTED_ENTRIES", 2)
    capped = json.loads(_call(registry, "list_files", {}))

    assert full == ["pkg/", "readme.md", "pkg/mod.py"]
    assert capped == ["pkg/", "readme.md"]


def test_check_file_status_reports_missing_paths(tmp_path: Path) -> None:
    (tmp_path / "a.py").write_text("abc", encoding="utf-8")
    registry = build_default_registry(tmp_path, ProjectConfig())

    statuses = json.loads(
        _call(registry, "check_file_status", {"file_paths": ["a.py", "missing.py"]})
    )

    assert statuses[0]["Exists"] is True
    assert statuses[0]["Size"] == 3
    assert statuses[0]["Extension"] == ".py"
    assert statuses[1] == {"Path": "missing.py", "Exists": False}


def test_validation_tool_runs_in_descriptor_directory(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    (tmp_path / "svc").mkdir()
    (tmp_path / "svc" / "pyproject.toml").write_text("", encoding="utf-8")
    observed: dict[str, Any] = {}
    monkeypatch.setattr(subprocess, "run", _fake_completed(observed, returncode=1, stdout="E1"))
    registry = build_default_registry(tmp_path, ProjectConfig(test_command="pytest -q"))

    payload = json.loads(_call(registry, TEST_TOOL, {"project_path": "svc/pyproject.toml"}))

    assert payload["Success"] is False
    assert payload["ExitCode"] == 1
    assert payload["Error"] == "E1"
    assert payload["Command"] == "pytest -q"
    assert observed["payload"] == ["pytest", "-q"]
    assert Path(observed["cwd"]) == (tmp_path / "svc").resolve()


def test_bash_always_uses_shell_and_reports_exit_code(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    observed: dict[str, Any] = {}
    monkeypatch.setattr(subprocess, "run", _fake_completed(observed, returncode=2))
    registry = build_default_registry(tmp_path, ProjectConfig())

    output = _call(registry, "bash", {"command": "ls"})

    assert observed["shell"] is True
    assert observed["payload"] == "ls"
    assert output == "ok\nExit code: 2"


def test_run_command_prefers_exec_mode_for_simple_commands(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    observed: dict[str, Any] = {}
    monkeypatch.setattr(subprocess, "run", _fake_completed(observed))

    result = run_command("python -c \"print('ok')\"", tmp_path)

    assert result["exit_code"] == 0
    assert result["used_shell"] is False
    assert observed["shell"] is False
    assert isinstance(observed["payload"], list)


def test_run_command_uses_shell_for_shell_operators(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    observed: dict[str, Any] = {}
    monkeypatch.setattr(subprocess, "run", _fake_completed(observed))

    result = run_command("python -c \"print('ok')\" | cat", tmp_path)

    assert result["used_shell"] is True
    assert observed["shell"] is True
    assert isinstance(observed["payload"], str)


def test_run_command_reports_timeouts(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: Any, **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise subprocess.TimeoutExpired(cmd=args[0], timeout=kwargs.get("timeout"))

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = run_command("sleep 10", tmp_path, timeout_seconds=1.0)

    assert result["exit_code"] == 124
    assert result["timed_out"] is True


def test_run_command_tolerates_output_that_is_not_utf8(tmp_path: Path) -> None:
    result = run_command("printf '\\377 ok'", tmp_path)

    assert result["exit_code"] == 0
    assert result["stdout_tail"] == "� ok"


def test_build_with_undecodable_output_still_succeeds(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text("", encoding="utf-8")
    registry = build_default_registry(
        tmp_path, ProjectConfig(build_command="printf '\\377 built'")
    )

    payload = json.loads(_call(registry, BUILD_TOOL, {"project_path": "pyproject.toml"}))

    assert payload["Success"] is True
    assert payload["ExitCode"] == 0
