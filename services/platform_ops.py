"""Service, file, and optional component adapters."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol

from services.runner import CommandRunner, ps_quote, run_powershell

logger = logging.getLogger(__name__)


class ServiceController(Protocol):
    def stop(self, name: str) -> None:  # pragma: no cover - protocol
        ...

    def start(self, name: str) -> None:  # pragma: no cover - protocol
        ...

    def restart(self, name: str) -> None:  # pragma: no cover - protocol
        ...


class FileOperations(Protocol):
    def copy(self, source: Path, destination: Path) -> None:  # pragma: no cover - protocol
        ...

    def remove_path(self, path: Path) -> None:  # pragma: no cover - protocol
        ...


class FeatureManager(Protocol):
    def is_feature_installed(self, name: str) -> bool:  # pragma: no cover - protocol
        ...

    def disable_feature(self, name: str) -> None:  # pragma: no cover - protocol
        ...

    def remove_capability(self, name: str) -> None:  # pragma: no cover - protocol
        ...

    def remove_package(self, name: str) -> None:  # pragma: no cover - protocol
        ...


class PowerShellServiceController:
    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def stop(self, name: str) -> None:
        run_powershell(self._runner, f"Stop-Service -Name {ps_quote(name)} -Force -ErrorAction Stop")

    def start(self, name: str) -> None:
        run_powershell(self._runner, f"Start-Service -Name {ps_quote(name)} -ErrorAction Stop")

    def restart(self, name: str) -> None:
        run_powershell(self._runner, f"Restart-Service -Name {ps_quote(name)} -Force -ErrorAction Stop")


class LocalFileOperations:
    def copy(self, source: Path, destination: Path) -> None:
        if not source.exists():
            raise FileNotFoundError(f"Source not found: {source}")
        if source.is_dir():
            shutil.copytree(source, destination, dirs_exist_ok=True)
            return
        if destination.is_dir():
            destination = destination / source.name
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)

    def remove_path(self, path: Path) -> None:
        if not path.exists() and not path.is_symlink():
            logger.debug("Path already absent: %s", path)
            return
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()


class DismFeatureManager:
    """Optional features, capabilities and OS packages through the DISM PowerShell module."""

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def is_feature_installed(self, name: str) -> bool:
        script = "; ".join(
            [
                f"$feature = Get-WindowsFeature -Name {ps_quote(name)} -ErrorAction Stop",
                "if ($feature -and $feature.Installed) { 'True' } else { 'False' }",
            ]
        )
        return run_powershell(self._runner, script).lower() == "true"

    def disable_feature(self, name: str) -> None:
        script = (
            f"Disable-WindowsOptionalFeature -Online -FeatureName {ps_quote(name)} "
            "-NoRestart -ErrorAction Stop | Out-Null"
        )
        run_powershell(self._runner, script)

    def remove_capability(self, name: str) -> None:
        script = "; ".join(
            [
                f"$caps = Get-WindowsCapability -Online | Where-Object {{ $_.Name -like {ps_quote(name + '*')} -and $_.State -eq 'Installed' }}",
                "foreach ($cap in $caps) { Remove-WindowsCapability -Online -Name $cap.Name -ErrorAction Stop | Out-Null }",
            ]
        )
        run_powershell(self._runner, script)

    def remove_package(self, name: str) -> None:
        script = "; ".join(
            [
                f"$packages = Get-WindowsPackage -Online | Where-Object {{ $_.PackageName -like {ps_quote(name + '*')} }}",
                "foreach ($package in $packages) { Remove-WindowsPackage -Online -PackageName $package.PackageName -NoRestart -ErrorAction Stop | Out-Null }",
            ]
        )
        run_powershell(self._runner, script)
