"""Step outcomes reported back to the command line tools."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from enterprise_defaults.options import RunOptions

logger = logging.getLogger(__name__)


@dataclass
class ApplyStepResult:
    name: str
    success: bool
    detail: str = ""
    skipped: bool = False

    @classmethod
    def skip(cls, name: str, reason: str) -> "ApplyStepResult":
        return cls(name, True, reason, skipped=True)

    @property
    def failed(self) -> bool:
        return not self.success


def attempt_step(name: str, action: Callable[[], object], options: RunOptions) -> ApplyStepResult:
    """Run one mutating action, honouring dry run and continue-on-error."""
    if options.dry_run:
        logger.info("What if: %s", name)
        return ApplyStepResult.skip(name, "dry run")
    try:
        action()
    except Exception as exc:
        logger.warning("%s failed: %s", name, exc)
        if not options.continue_on_error:
            raise
        return ApplyStepResult(name, False, str(exc))
    logger.info("%s", name)
    return ApplyStepResult(name, True)
