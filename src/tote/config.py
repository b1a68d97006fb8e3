from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CONFIG_FILE = "tote.toml"


class ConfigError(ValueError):
    """Raised when a configuration file cannot be loaded."""


@dataclass(slots=True)
class ProjectConfig:
    name: str = "my-project"
    build_command: str = "python -m compileall -q ."
    test_command: str = "pytest -q"
    lint_command: str = "ruff check ."
    command_timeout_seconds: float = 300.0
    descriptor_patterns: list[str] = field(
        default_factory=lambda: [
            "pyproject.toml",
            "setup.py",
            "setup.cfg",
            "*.sln",
            "*.csproj",
            "package.json",
            "Cargo.toml",
            "go.mod",
        ]
    )
    excluded_dirs: list[str] = field(
        default_factory=lambda: [
            "bin",
            "obj",
            "build",
            "dist",
            "target",
            "node_modules",
            ".git",
            ".venv",
            "venv",
            "__pycache__",
        ]
    )


PROVIDERS = ("openai", "anthropic")
DEFAULT_MODELS = {"openai": "gpt-4o", "anthropic": "claude-sonnet-4-5"}
DEFAULT_API_KEY_ENVS = {"openai": "OPENAI_API_KEY", "anthropic": "ANTHROPIC_API_KEY"}


@dataclass(slots=True)
class BackendConfig:
    provider: str = "openai"
    # Empty model and api_key_env fall back to the provider defaults above.
    model: str = ""
    fallback_model: str = ""
    base_url: str = ""
    api_key_env: str = ""
    temperature: float = 0.0
    max_tokens: int = 4096
    max_retries: int = 1
    retry_backoff_seconds: float = 0.5
    timeout_seconds: float = 90.0

    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]

    def resolved_api_key_env(self) -> str:
        return self.api_key_env or DEFAULT_API_KEY_ENVS[self.provider]


@dataclass(slots=True)
class LoopConfig:
    max_iterations: int = 50
    max_subtask_attempts: int = 3
    max_failed_subtasks: int = 5
    max_execution_time_minutes: float = 30.0
    max_tool_rounds: int = 5
    history_window: int = 3
    iteration_error_backoff_seconds: float = 1.0


@dataclass(slots=True)
class ToteConfig:
    project: ProjectConfig = field(default_factory=ProjectConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)

    @classmethod
    def default(cls) -> ToteConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> ToteConfig:
        try:
            config = cls(
                project=ProjectConfig(**data.get("project", {})),
                backend=BackendConfig(**data.get("backend", {})),
                loop=LoopConfig(**data.get("loop", {})),
            )
        except TypeError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc
        if config.backend.provider not in PROVIDERS:
            raise ConfigError(
                f"Invalid configuration: unknown backend provider {config.backend.provider!r}; "
                f"expected one of: {', '.join(PROVIDERS)}"
            )
        return config

    def to_dict(self) -> dict:
        return {
            "project": {
                "name": self.project.name,
                "build_command": self.project.build_command,
                "test_command": self.project.test_command,
                "lint_command": self.project.lint_command,
                "command_timeout_seconds": self.project.command_timeout_seconds,
                "descriptor_patterns": list(self.project.descriptor_patterns),
                "excluded_dirs": list(self.project.excluded_dirs),
            },
            "backend": {
                "provider": self.backend.provider,
                "model": self.backend.model,
                "fallback_model": self.backend.fallback_model,
                "base_url": self.backend.base_url,
                "api_key_env": self.backend.api_key_env,
                "temperature": self.backend.temperature,
                "max_tokens": self.backend.max_tokens,
                "max_retries": self.backend.max_retries,
                "retry_backoff_seconds": self.backend.retry_backoff_seconds,
                "timeout_seconds": self.backend.timeout_seconds,
            },
            "loop": {
                "max_iterations": self.loop.max_iterations,
                "max_subtask_attempts": self.loop.max_subtask_attempts,
                "max_failed_subtasks": self.loop.max_failed_subtasks,
                "max_execution_time_minutes": self.loop.max_execution_time_minutes,
                "max_tool_rounds": self.loop.max_tool_rounds,
                "history_window": self.loop.history_window,
                "iteration_error_backoff_seconds": self.loop.iteration_error_backoff_seconds,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        if rendered.endswith("."):
            rendered += "0"
        return rendered
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: ToteConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ("project", "backend", "loop"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> ToteConfig:
    if not path.exists():
        return ToteConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc
    return ToteConfig.from_dict(data)


def save_config(path: Path, config: ToteConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
