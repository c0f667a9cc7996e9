"""Facts about the running system used to select and gate configuration."""
from __future__ import annotations

import ctypes
import logging
from dataclasses import dataclass
from typing import Protocol

from enterprise_defaults.constants import IMMUTABLE_CONFIG, OobeSetting
from services.documents import Version, format_version, parse_version
from services.privilege import is_admin
from services.registry import RegistryAccessor
from services.runner import CommandRunner, run_powershell_json

logger = logging.getLogger(__name__)

CLIENT = "Client"
SERVER = "Server"
WORKSTATION_PRODUCT_TYPE = 1
CLIENT_NAMES = ((22000, "Windows11"), (0, "Windows10"))
SERVER_NAMES = (
    (26100, "WindowsServer2025"),
    (20348, "WindowsServer2022"),
    (17763, "WindowsServer2019"),
    (0, "WindowsServer2016"),
)
FACTS_SCRIPT = "; ".join(
    [
        "$os = Get-CimInstance -ClassName Win32_OperatingSystem",
        "$cs = Get-CimInstance -ClassName Win32_ComputerSystem",
        "@{ Version = $os.Version; BuildNumber = $os.BuildNumber; ProductType = $os.ProductType; "
        "Caption = $os.Caption; Model = $cs.Model } | ConvertTo-Json -Compress",
    ]
)


@dataclass(frozen=True)
class SystemFacts:
    os_version: Version
    platform: str
    model: str
    os_name: str
    caption: str = ""

    @property
    def build(self) -> int:
        return self.os_version[2]

    def describe(self) -> str:
        return (
            f"{self.caption or self.os_name} {format_version(self.os_version)} "
            f"({self.platform}, model: {self.model or 'unknown'})"
        )


class SystemFactsProvider(Protocol):
    def collect(self) -> SystemFacts:  # pragma: no cover - protocol
        ...

    def is_elevated(self) -> bool:  # pragma: no cover - protocol
        ...

    def is_setup_complete(self) -> bool:  # pragma: no cover - protocol
        ...


def platform_from_product_type(product_type: int | str | None) -> str:
    try:
        return CLIENT if int(product_type or WORKSTATION_PRODUCT_TYPE) == WORKSTATION_PRODUCT_TYPE else SERVER
    except (TypeError, ValueError):
        return CLIENT


def os_name_for(platform: str, build: int) -> str:
    names = SERVER_NAMES if platform == SERVER else CLIENT_NAMES
    for minimum, name in names:
        if build >= minimum:
            return name
    return names[-1][1]


class WindowsSystemFactsProvider:
    def __init__(
        self,
        runner: CommandRunner,
        registry: RegistryAccessor,
        *,
        model_override: str | None = None,
        oobe: OobeSetting | None = None,
    ) -> None:
        self._runner = runner
        self._registry = registry
        self._model_override = model_override
        self._oobe = oobe or IMMUTABLE_CONFIG.defaults.oobe

    def collect(self) -> SystemFacts:
        rows = run_powershell_json(self._runner, FACTS_SCRIPT)
        if not rows:
            raise RuntimeError("Unable to query Win32_OperatingSystem")
        data = rows[0]
        version = parse_version(data.get("Version") or f"10.0.{data.get('BuildNumber', 0)}")
        platform = platform_from_product_type(data.get("ProductType"))
        model = (self._model_override or str(data.get("Model") or "")).strip()
        facts = SystemFacts(
            os_version=version,
            platform=platform,
            model=model,
            os_name=os_name_for(platform, version[2]),
            caption=str(data.get("Caption") or "").strip(),
        )
        logger.info("System: %s", facts.describe())
        return facts

    def is_elevated(self) -> bool:
        return is_admin()

    def is_setup_complete(self) -> bool:
        try:
            completed = ctypes.c_int(0)
            if ctypes.windll.kernel32.OOBEComplete(ctypes.byref(completed)):  # type: ignore[attr-defined]
                return bool(completed.value)
        except AttributeError:
            logger.debug("OOBEComplete unavailable, reading %s", self._oobe.setup_key)
        for value_name in self._oobe.in_progress_values:
            value = self._registry.get_value(self._oobe.setup_key, value_name)
            if value is not None and int(value) != 0:
                return False
        return True
