from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from tote.backends import (
    AnthropicBackend,
    ModelGateway,
    OpenAIChatBackend,
    ResilientBackend,
    RetryPolicy,
)
from tote.config import (
    DEFAULT_CONFIG_FILE,
    BackendConfig,
    ConfigError,
    ToteConfig,
    load_config,
    save_config,
)
from tote.controller import CompletionController, ControllerEventHook
from tote.critic import Critic
from tote.models import TaskCompletionResult
from tote.observer import Observer
from tote.specialists import Executor, PlanAdapter, PlanBuilder
from tote.tools import ToolRegistry, build_default_registry


@dataclass(slots=True)
class Runtime:
    root: Path
    config: ToteConfig
    registry: ToolRegistry
    controller: CompletionController


def _resolve_config_path(root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = root / config_path
    return config_path.resolve()


def _load(config_path: Path) -> ToteConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _make_gateway(settings: BackendConfig, model: str) -> ModelGateway:
    if settings.provider == "anthropic":
        return AnthropicBackend(
            model=model,
            base_url=settings.base_url or None,
            api_key_env=settings.resolved_api_key_env(),
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )
    return OpenAIChatBackend(
        model=model,
        base_url=settings.base_url or None,
        api_key_env=settings.resolved_api_key_env(),
        temperature=settings.temperature,
    )


def _build_backend(config: ToteConfig, event_hook: ControllerEventHook | None) -> ResilientBackend:
    settings = config.backend
    model = settings.resolved_model()
    primary = _make_gateway(settings, model)
    fallback_name = settings.fallback_model or model
    fallback = primary
    if fallback_name != model:
        fallback = _make_gateway(settings, fallback_name)
    policy = RetryPolicy(
        max_retries=max(0, int(settings.max_retries)),
        backoff_seconds=max(0.0, float(settings.retry_backoff_seconds)),
        timeout_seconds=max(5.0, float(settings.timeout_seconds)),
    )
    return ResilientBackend(
        primary_name=model,
        primary_backend=primary,
        fallback_name=fallback_name,
        fallback_backend=fallback,
        retry_policy=policy,
        event_hook=event_hook,
    )


def _build_runtime(
    root: Path,
    config: ToteConfig,
    *,
    gateway: ModelGateway | None = None,
    event_hook: ControllerEventHook | None = None,
) -> Runtime:
    registry = build_default_registry(root, config.project)
    if gateway is None:
        gateway = _build_backend(config, event_hook)
    tool_names = registry.names()
    controller = CompletionController(
        planner=PlanBuilder(gateway),
        executor=Executor(
            gateway,
            registry,
            max_tool_rounds=config.loop.max_tool_rounds,
            history_window=config.loop.history_window,
        ),
        observer=Observer(
            root,
            registry,
            descriptor_patterns=config.project.descriptor_patterns,
            excluded_dirs=config.project.excluded_dirs,
        ),
        critic=Critic(),
        adapter=PlanAdapter(gateway, tool_names),
        tool_names=tool_names,
        loop_config=config.loop,
        event_hook=event_hook,
    )
    return Runtime(root=root, config=config, registry=registry, controller=controller)


def _echo_event(event: dict[str, Any]) -> None:
    name = event.get("event", "event")
    details = " ".join(f"{key}={value}" for key, value in event.items() if key != "event")
    click.echo(f"[{name}] {details}", err=True)


def _echo_summary(result: TaskCompletionResult) -> None:
    status = "SUCCESS" if result.success else "FAILED"
    click.echo(f"Task: {result.task_description}")
    click.echo(f"Status: {status}")
    click.echo(f"Duration: {result.duration_seconds:.1f}s")
    click.echo(f"Iterations: {result.total_iterations}")
    if result.stop_reason is not None:
        click.echo(f"Stop reason: {result.stop_reason.value}")
    if result.error:
        click.echo(f"Error: {result.error}")
    if result.plan is not None:
        click.echo(result.plan.progress_summary())
        for subtask in result.plan.subtasks:
            marker = " (adapted)" if subtask.is_adapted else ""
            click.echo(
                f"  {subtask.id:<16} {subtask.status.value:<11} "
                f"attempts={subtask.attempt_count}{marker} {subtask.description}"
            )
    if result.deadlocked_subtask_ids:
        click.echo("Blocked subtasks: " + ", ".join(result.deadlocked_subtask_ids))


@click.group()
def cli() -> None:
    """tote: autonomous task-completion loop."""


@cli.command("init")
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config file.")
def init_command(config_value: str, force: bool) -> None:
    root = Path.cwd().resolve()
    config_path = _resolve_config_path(root, config_value)
    if config_path.exists() and not force:
        raise click.ClickException(f"{config_path} already exists; use --force to overwrite.")
    config = ToteConfig.default()
    config.project.name = root.name or config.project.name
    save_config(config_path, config)
    click.echo(f"Config: {config_path}")
    click.echo(f"Model: {config.backend.model}")


@cli.command("tools")
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
@click.option(
    "--root",
    "root_value",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Working directory the tools operate in.",
)
def tools_command(config_value: str, root_value: Path | None) -> None:
    root = (root_value or Path.cwd()).resolve()
    config = _load(_resolve_config_path(root, config_value))
    registry = build_default_registry(root, config.project)
    for line in registry.describe():
        click.echo(line)


@cli.command("run")
@click.argument("task")
@click.option("-c", "--constraint", "constraints", multiple=True, help="Repeatable constraint.")
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
@click.option(
    "--root",
    "root_value",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Working directory the task operates in.",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the JSON report.")
@click.option("-v", "--verbose", is_flag=True, default=False)
def run_command(
    task: str,
    constraints: tuple[str, ...],
    config_value: str,
    root_value: Path | None,
    as_json: bool,
    verbose: bool,
) -> None:
    root = (root_value or Path.cwd()).resolve()
    config = _load(_resolve_config_path(root, config_value))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    runtime = _build_runtime(root, config, event_hook=_echo_event if verbose else None)
    result = asyncio.run(runtime.controller.complete_task(task, list(constraints)))

    if as_json:
        click.echo(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        _echo_summary(result)
    if not result.success:
        raise SystemExit(1)


def main() -> None:
    cli()
