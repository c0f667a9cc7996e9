"""Exceptions raised by the defaults engine."""
from __future__ import annotations

import subprocess
from typing import Sequence


class DefaultsError(RuntimeError):
    pass


class ConfigDocumentError(DefaultsError):
    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class CommandError(DefaultsError):
    def __init__(self, command: Sequence[str], returncode: int, detail: str = "") -> None:
        message = f"{command[0] if command else 'command'} exited with {returncode}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.command = tuple(command)
        self.returncode = returncode
        self.detail = detail

    @classmethod
    def from_completed(cls, completed: subprocess.CompletedProcess[str]) -> "CommandError":
        detail = (completed.stderr or completed.stdout or "").strip()
        args = completed.args if isinstance(completed.args, (list, tuple)) else [str(completed.args)]
        return cls([str(arg) for arg in args], completed.returncode, detail)


class ElevationRequiredError(DefaultsError):
    pass
