"""Console and rotating file logging for the command line tools."""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from enterprise_defaults.options import RunOptions

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "EnterpriseDefaults.log"
MAX_LOG_BYTES = 2 * 1024 * 1024
LOG_BACKUP_COUNT = 3


def configure_logging(
    options: RunOptions,
    log_dir: Path | str | None = None,
    *,
    fallback_dir: Path | str | None = None,
) -> Path | None:
    """Install console and file handlers on the root logger.

    Returns the log file in use, or ``None`` when neither directory is writable.
    """
    level = logging.DEBUG if options.verbose else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    console.setLevel(level)
    root.addHandler(console)

    for candidate in (log_dir, fallback_dir):
        if candidate is None:
            continue
        path = Path(candidate) / LOG_FILE_NAME
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path,
                maxBytes=MAX_LOG_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            root.warning("Cannot write log file %s: %s", path, exc)
            continue
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)
        return path
    return None
