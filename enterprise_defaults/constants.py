"""Immutable settings shared by the defaults installer."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

PACKAGE_VERSION = "1.0.0"


@dataclass(frozen=True)
class UninstallKeySetting:
    path: str
    display_name: str
    publisher: str
    system_component: int


@dataclass(frozen=True)
class DefaultUserHiveSetting:
    hive_path: str
    mount_key: str


@dataclass(frozen=True)
class AppxSetting:
    deprovisioned_root: str
    provisioned_removal_build: Tuple[int, ...]


@dataclass(frozen=True)
class OobeSetting:
    setup_key: str
    in_progress_values: Tuple[str, ...]


@dataclass(frozen=True)
class FixedDefaultsConfig:
    uninstall: UninstallKeySetting
    default_user: DefaultUserHiveSetting
    appx: AppxSetting
    oobe: OobeSetting
    feature_update_path: str
    log_directory: str
    config_directory: str


@dataclass(frozen=True)
class ImmutableConfig:
    defaults: FixedDefaultsConfig


FIXED_DEFAULTS_CONFIG = FixedDefaultsConfig(
    uninstall=UninstallKeySetting(
        path=r"HKLM:\SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall\{6a5e1c3d-3b7f-4f0e-9f1d-2c8b7e4a9d51}",
        display_name="Windows Enterprise Defaults",
        publisher="Enterprise Defaults",
        system_component=1,
    ),
    default_user=DefaultUserHiveSetting(
        hive_path=r"C:\Users\Default\NTUSER.DAT",
        mount_key="EnterpriseDefaultUser",
    ),
    appx=AppxSetting(
        deprovisioned_root=r"HKLM:\SOFTWARE\Microsoft\Windows\CurrentVersion\Appx\AppxAllUserStore\Deprovisioned",
        provisioned_removal_build=(10, 0, 22000),
    ),
    oobe=OobeSetting(
        setup_key=r"HKLM:\SYSTEM\Setup",
        in_progress_values=("OOBEInProgress", "SystemSetupInProgress"),
    ),
    feature_update_path=r"C:\Windows\System32\Update\Run\{6a5e1c3d-3b7f-4f0e-9f1d-2c8b7e4a9d51}",
    log_directory=r"C:\Windows\Logs\EnterpriseDefaults",
    config_directory="configs",
)

IMMUTABLE_CONFIG = ImmutableConfig(
    defaults=FIXED_DEFAULTS_CONFIG,
)
