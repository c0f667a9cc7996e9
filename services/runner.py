"""Command execution helpers shared by the PowerShell-backed adapters."""
from __future__ import annotations

import json
import subprocess
from typing import Any, Protocol, Sequence

from services.errors import CommandError

POWERSHELL = "powershell"


class CommandRunner(Protocol):
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:  # pragma: no cover - protocol
        ...


class SubprocessRunner:
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(list(command), capture_output=True, text=True, check=False)


def powershell_command(script: str) -> list[str]:
    return [POWERSHELL, "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", script]


def run_checked(runner: CommandRunner, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
    completed = runner.run(command)
    if completed.returncode != 0:
        raise CommandError.from_completed(completed)
    return completed


def run_powershell(runner: CommandRunner, script: str) -> str:
    completed = run_checked(runner, powershell_command(script))
    return (completed.stdout or "").strip()


def run_powershell_json(runner: CommandRunner, script: str) -> list[dict[str, Any]]:
    """Run a script ending in ``ConvertTo-Json`` and normalise the result to a list."""
    output = run_powershell(runner, script)
    if not output:
        return []
    data = json.loads(output)
    if isinstance(data, dict):
        data = [data]
    return [item for item in data if isinstance(item, dict)]


def ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"
