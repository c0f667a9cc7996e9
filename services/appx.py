"""AppX package removal: selection policy, package store and deprovisioning."""
from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Protocol

from enterprise_defaults.constants import IMMUTABLE_CONFIG, AppxSetting
from enterprise_defaults.options import RunOptions
from enterprise_defaults.safe_packages import (
    SAFE_PACKAGE_FAMILIES,
    SAFE_PACKAGE_WILDCARDS,
    TARGETED_PACKAGE_FAMILIES,
)
from services.documents import Version, format_version
from services.errors import ElevationRequiredError
from services.registry import RegistryAccessor
from services.results import ApplyStepResult
from services.runner import CommandRunner, ps_quote, run_powershell, run_powershell_json

logger = logging.getLogger(__name__)


class RemovalMode(str, Enum):
    SAFE = "Safe"
    TARGETED = "Targeted"


@dataclass(frozen=True)
class PackageRecord:
    name: str
    package_full_name: str
    package_family_name: str
    non_removable: bool = False
    is_framework: bool = False


@dataclass(frozen=True)
class SafetyPolicy:
    mode: RemovalMode
    exact_allow_list: frozenset[str] = frozenset()
    wildcard_allow_list: tuple[str, ...] = ()
    deny_list: frozenset[str] = frozenset()

    @classmethod
    def safe(
        cls,
        exact_allow_list: Iterable[str] | None = None,
        wildcard_allow_list: Iterable[str] | None = None,
    ) -> "SafetyPolicy":
        exact = SAFE_PACKAGE_FAMILIES if exact_allow_list is None else exact_allow_list
        wildcards = SAFE_PACKAGE_WILDCARDS if wildcard_allow_list is None else wildcard_allow_list
        return cls(
            RemovalMode.SAFE,
            exact_allow_list=frozenset(name.lower() for name in exact),
            wildcard_allow_list=tuple(pattern.lower() for pattern in wildcards),
        )

    @classmethod
    def targeted(cls, deny_list: Iterable[str] | None = None) -> "SafetyPolicy":
        names = TARGETED_PACKAGE_FAMILIES if deny_list is None else deny_list
        return cls(RemovalMode.TARGETED, deny_list=frozenset(name.lower() for name in names))

    def allows(self, family_name: str) -> bool:
        family = family_name.lower()
        if family in self.exact_allow_list:
            return True
        return any(fnmatch.fnmatchcase(family, pattern) for pattern in self.wildcard_allow_list)


def select_packages_to_remove(
    installed: Iterable[PackageRecord],
    policy: SafetyPolicy,
    elevated: bool,
) -> list[PackageRecord]:
    """Pick the packages to remove; ``elevated`` only affects how ``installed`` was enumerated."""
    logger.debug("Selecting %s removals (%s scope)", policy.mode.value, "all users" if elevated else "current user")
    selected: dict[str, PackageRecord] = {}
    for package in installed:
        family = package.package_family_name.lower()
        if policy.mode is RemovalMode.TARGETED:
            keep = family not in policy.deny_list
        else:
            keep = package.non_removable or package.is_framework or policy.allows(family)
        if not keep:
            selected.setdefault(package.package_full_name.lower(), package)
    return sorted(selected.values(), key=lambda item: item.package_family_name.lower())


class PackageStore(Protocol):
    def list_installed_packages(self, all_users: bool) -> list[PackageRecord]:  # pragma: no cover - protocol
        ...

    def remove_package(self, package_full_name: str, all_users: bool) -> None:  # pragma: no cover - protocol
        ...

    def list_provisioned_packages(self) -> list[PackageRecord]:  # pragma: no cover - protocol
        ...

    def remove_provisioned_package(self, package_name: str) -> None:  # pragma: no cover - protocol
        ...


class PowerShellPackageStore:
    """Package store backed by the Appx and DISM PowerShell modules."""

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def list_installed_packages(self, all_users: bool) -> list[PackageRecord]:
        scope = " -AllUsers" if all_users else ""
        script = (
            f"Get-AppxPackage{scope} | Select-Object Name, PackageFullName, PackageFamilyName, "
            "NonRemovable, IsFramework | ConvertTo-Json -Compress"
        )
        return [self._record(row) for row in run_powershell_json(self._runner, script)]

    def remove_package(self, package_full_name: str, all_users: bool) -> None:
        scope = " -AllUsers" if all_users else ""
        run_powershell(self._runner, f"Remove-AppxPackage -Package {ps_quote(package_full_name)}{scope} -ErrorAction Stop")

    def list_provisioned_packages(self) -> list[PackageRecord]:
        script = (
            "Get-AppxProvisionedPackage -Online | Select-Object DisplayName, PackageName, PublisherId "
            "| ConvertTo-Json -Compress"
        )
        records = []
        for row in run_powershell_json(self._runner, script):
            display_name = str(row.get("DisplayName") or "")
            records.append(
                PackageRecord(
                    name=display_name,
                    package_full_name=str(row.get("PackageName") or ""),
                    package_family_name=f"{display_name}_{row.get('PublisherId') or ''}",
                )
            )
        return records

    def remove_provisioned_package(self, package_name: str) -> None:
        run_powershell(
            self._runner,
            f"Remove-AppxProvisionedPackage -Online -PackageName {ps_quote(package_name)} -AllUsers -ErrorAction Stop | Out-Null",
        )

    def _record(self, row: dict[str, Any]) -> PackageRecord:
        return PackageRecord(
            name=str(row.get("Name") or ""),
            package_full_name=str(row.get("PackageFullName") or ""),
            package_family_name=str(row.get("PackageFamilyName") or ""),
            non_removable=bool(row.get("NonRemovable")),
            is_framework=bool(row.get("IsFramework")),
        )


@dataclass
class AppxRemovalResult:
    mode: RemovalMode
    removed: list[PackageRecord] = field(default_factory=list)
    failed: list[PackageRecord] = field(default_factory=list)
    provisioned_removed: list[PackageRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def as_step(self) -> ApplyStepResult:
        detail = f"removed {len(self.removed)}, provisioned {len(self.provisioned_removed)}, failed {len(self.failed)}"
        if self.errors:
            detail = f"{detail}; {'; '.join(self.errors)}"
        return ApplyStepResult(f"AppX removal ({self.mode.value})", not self.failed and not self.errors, detail)


class AppxRemovalService:
    def __init__(
        self,
        store: PackageStore,
        registry: RegistryAccessor,
        *,
        os_version: Version,
        elevated: bool,
        options: RunOptions | None = None,
        setting: AppxSetting | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._os_version = os_version
        self._elevated = elevated
        self._options = options or RunOptions()
        self._setting = setting or IMMUTABLE_CONFIG.defaults.appx

    @property
    def needs_provisioned_pass(self) -> bool:
        return self._os_version < self._threshold()

    def remove(self, policy: SafetyPolicy) -> AppxRemovalResult:
        result = AppxRemovalResult(policy.mode)
        installed = self._store.list_installed_packages(all_users=self._elevated)
        targets = select_packages_to_remove(installed, policy, self._elevated)
        logger.info("%s mode: %d of %d installed package(s) selected for removal", policy.mode.value, len(targets), len(installed))
        for package in targets:
            if self._options.dry_run:
                logger.info("What if: remove package %s", package.package_full_name)
                result.removed.append(package)
                continue
            try:
                self._store.remove_package(package.package_full_name, all_users=self._elevated)
            except Exception as exc:
                logger.warning("Failed to remove %s: %s", package.package_full_name, exc)
                result.failed.append(package)
                continue
            logger.info("Removed package %s", package.package_family_name)
            result.removed.append(package)
            self._write_deprovisioned_marker(package)
        if self.needs_provisioned_pass:
            try:
                self._remove_provisioned(policy, result)
            except ElevationRequiredError as exc:
                logger.error("%s", exc)
                result.errors.append(str(exc))
        return result

    def _remove_provisioned(self, policy: SafetyPolicy, result: AppxRemovalResult) -> None:
        if not self._elevated:
            raise ElevationRequiredError(
                "Removing provisioned packages on "
                f"{format_version(self._os_version)} requires an elevated session"
            )
        provisioned = self._store.list_provisioned_packages()
        for package in select_packages_to_remove(provisioned, policy, self._elevated):
            if self._options.dry_run:
                logger.info("What if: remove provisioned package %s", package.package_full_name)
                result.provisioned_removed.append(package)
                continue
            try:
                self._store.remove_provisioned_package(package.package_full_name)
            except Exception as exc:
                logger.warning("Failed to remove provisioned package %s: %s", package.package_full_name, exc)
                result.failed.append(package)
                continue
            logger.info("Removed provisioned package %s", package.package_full_name)
            result.provisioned_removed.append(package)
            self._write_deprovisioned_marker(package)

    def _write_deprovisioned_marker(self, package: PackageRecord) -> None:
        path = f"{self._setting.deprovisioned_root}\\{package.package_family_name}"
        try:
            self._registry.create_key(path)
        except Exception as exc:
            logger.warning("Could not write deprovisioned marker %s: %s", path, exc)

    def _threshold(self) -> Version:
        parts = list(self._setting.provisioned_removal_build)
        while len(parts) < 4:
            parts.append(0)
        return (parts[0], parts[1], parts[2], parts[3])
