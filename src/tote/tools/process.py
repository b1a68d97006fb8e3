from __future__ import annotations

import re
import shlex
import subprocess
from pathlib import Path
from typing import Any

SHELL_REQUIRED_PATTERN = re.compile(r"(?:\|\||&&|[|;<>`*?~]|[$]\(|[$]\{?\w)")
OUTPUT_TAIL_CHARS = 4000


def run_command(
    command: str,
    cwd: Path,
    *,
    timeout_seconds: float | None = None,
    force_shell: bool = False,
) -> dict[str, Any]:
    """Run ``command`` in ``cwd`` and return exit code plus output tails."""
    command_text = command.strip()
    if not command_text:
        return {
            "command": command,
            "exit_code": 1,
            "stdout_tail": "",
            "stderr_tail": "Command is empty.",
            "used_shell": False,
            "timed_out": False,
        }

    used_shell = force_shell or bool(SHELL_REQUIRED_PATTERN.search(command_text))
    command_payload: str | list[str] = command_text
    if not used_shell:
        try:
            command_payload = shlex.split(command_text)
        except ValueError:
            used_shell = True
            command_payload = command_text

    try:
        proc = subprocess.run(
            command_payload,
            cwd=cwd,
            shell=used_shell,
            encoding="utf-8",
            errors="replace",
            capture_output=True,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired as exc:
        return {
            "command": command,
            "exit_code": 124,
            "stdout_tail": _decode(exc.stdout)[-OUTPUT_TAIL_CHARS:],
            "stderr_tail": f"Command timed out after {timeout_seconds}s.",
            "used_shell": used_shell,
            "timed_out": True,
        }
    except FileNotFoundError as exc:
        return {
            "command": command,
            "exit_code": 127,
            "stdout_tail": "",
            "stderr_tail": f"Command not found: {exc.filename or command_text}",
            "used_shell": used_shell,
            "timed_out": False,
        }
    return {
        "command": command,
        "exit_code": proc.returncode,
        "stdout_tail": proc.stdout.strip()[-OUTPUT_TAIL_CHARS:],
        "stderr_tail": proc.stderr.strip()[-OUTPUT_TAIL_CHARS:],
        "used_shell": used_shell,
        "timed_out": False,
    }


def _decode(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw
