"""Per-run options threaded through every adapter call."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RunOptions:
    verbosity: int = 0
    dry_run: bool = False
    continue_on_error: bool = True

    @property
    def verbose(self) -> bool:
        return self.verbosity > 0
