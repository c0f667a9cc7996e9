"""Elevation and process bitness helpers for Windows."""
from __future__ import annotations

import ctypes
import logging
import os
import struct
import subprocess
from typing import Final, Sequence

logger = logging.getLogger(__name__)

# The py launcher lives in %SystemRoot%, which is not redirected for 32-bit processes.
NATIVE_LAUNCHER: Final[tuple[str, ...]] = ("py", "-3-64")


def is_admin() -> bool:
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
    except AttributeError:
        return False


def is_32bit_process_on_64bit_os() -> bool:
    if os.name != "nt":
        return False
    return struct.calcsize("P") == 4 and bool(os.environ.get("PROCESSOR_ARCHITEW6432"))


def needs_native_relaunch() -> bool:
    """True when running under WOW64, where registry and System32 writes are redirected."""
    return is_32bit_process_on_64bit_os()


def native_relaunch_command(argv: Sequence[str]) -> list[str]:
    """Build the relaunch command: the same script and arguments under a 64-bit interpreter."""
    return [*NATIVE_LAUNCHER, *argv]


def relaunch_native(argv: Sequence[str]) -> int:
    command = native_relaunch_command(argv)
    logger.info("Relaunching under a 64-bit interpreter: %s", " ".join(command))
    completed = subprocess.run(command, check=False)
    return completed.returncode
