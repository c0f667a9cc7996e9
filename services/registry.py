"""Registry access: live hives, the default user hive, and key ownership."""
from __future__ import annotations

import logging
from typing import Any, Protocol

from enterprise_defaults.constants import DefaultUserHiveSetting
from services.documents import RegistryValueType
from services.errors import DefaultsError
from services.runner import CommandRunner

try:  # Windows-only dependency, optional for test doubles
    import winreg  # type: ignore
except ImportError:  # pragma: no cover - not available on Linux runners
    winreg = None  # type: ignore

try:  # pywin32, Windows-only
    import win32api  # type: ignore
    import win32security  # type: ignore
except ImportError:  # pragma: no cover - not available on Linux runners
    win32api = None  # type: ignore
    win32security = None  # type: ignore

logger = logging.getLogger(__name__)

HIVE_ALIASES = {
    "HKLM": "HKLM",
    "HKEY_LOCAL_MACHINE": "HKLM",
    "HKCU": "HKCU",
    "HKEY_CURRENT_USER": "HKCU",
    "HKCR": "HKCR",
    "HKEY_CLASSES_ROOT": "HKCR",
    "HKU": "HKU",
    "HKEY_USERS": "HKU",
    "HKCC": "HKCC",
    "HKEY_CURRENT_CONFIG": "HKCC",
}
# Object names expected by SetNamedSecurityInfo for SE_REGISTRY_KEY.
SECURITY_OBJECT_ROOTS = {
    "HKLM": "MACHINE",
    "HKCU": "CURRENT_USER",
    "HKCR": "CLASSES_ROOT",
    "HKU": "USERS",
    "HKCC": "MACHINE\\SYSTEM\\CurrentControlSet\\Hardware Profiles\\Current",
}
OWNERSHIP_PRIVILEGES = ("SeTakeOwnershipPrivilege", "SeRestorePrivilege")


def split_registry_path(path: str) -> tuple[str, str]:
    """Split ``HKLM:\\Key``, ``HKLM\\Key`` or ``HKEY_LOCAL_MACHINE\\Key`` into hive and subkey."""
    cleaned = path.replace("/", "\\").strip()
    if cleaned.lower().startswith("registry::"):
        cleaned = cleaned[len("registry::"):]
    head, _, subkey = cleaned.partition("\\")
    hive_name = head.rstrip(":").upper()
    try:
        hive = HIVE_ALIASES[hive_name]
    except KeyError as exc:
        raise ValueError(f"Unsupported hive in registry path: {path}") from exc
    return hive, subkey.strip("\\")


def normalize_registry_path(path: str) -> str:
    hive, subkey = split_registry_path(path)
    return f"{hive}:\\{subkey}" if subkey else f"{hive}:\\"


def infer_value_type(value: Any) -> RegistryValueType:
    if isinstance(value, (bytes, bytearray)):
        return RegistryValueType.BINARY
    if isinstance(value, (list, tuple)):
        return RegistryValueType.MULTI_STRING
    if isinstance(value, int):
        return RegistryValueType.DWORD if 0 <= value <= 0xFFFFFFFF else RegistryValueType.QWORD
    return RegistryValueType.STRING


class RegistryAccessor(Protocol):
    def get_value(self, path: str, value_name: str) -> Any | None:  # pragma: no cover - protocol
        ...

    def set_value(
        self,
        path: str,
        value_name: str,
        value: Any,
        value_type: RegistryValueType | None = None,
    ) -> None:  # pragma: no cover - protocol
        ...

    def create_key(self, path: str) -> None:  # pragma: no cover - protocol
        ...

    def delete_key(self, path: str) -> None:  # pragma: no cover - protocol
        ...

    def change_owner(self, path: str, sid: str) -> None:  # pragma: no cover - protocol
        ...


class WindowsRegistryAccessor:
    """Registry helper backed by winreg, with pywin32 for ownership changes."""

    def __init__(self) -> None:
        if winreg is None:
            raise RuntimeError("winreg not available on this platform")

    def get_value(self, path: str, value_name: str) -> Any | None:
        hive, subkey = self._open_args(path)
        try:
            with winreg.OpenKey(hive, subkey) as key:  # type: ignore[arg-type]
                value, _ = winreg.QueryValueEx(key, value_name)
                return value
        except FileNotFoundError:
            return None

    def set_value(
        self,
        path: str,
        value_name: str,
        value: Any,
        value_type: RegistryValueType | None = None,
    ) -> None:
        hive, subkey = self._open_args(path)
        kind = self._winreg_type(value_type or infer_value_type(value))
        with winreg.CreateKeyEx(hive, subkey, 0, winreg.KEY_WRITE) as key:  # type: ignore[arg-type]
            winreg.SetValueEx(key, value_name, 0, kind, value)

    def create_key(self, path: str) -> None:
        hive, subkey = self._open_args(path)
        with winreg.CreateKeyEx(hive, subkey, 0, winreg.KEY_WRITE):  # type: ignore[arg-type]
            pass

    def delete_key(self, path: str) -> None:
        hive, subkey = self._open_args(path)
        if not subkey:
            raise ValueError(f"Refusing to delete hive root: {path}")
        try:
            self._delete_tree(hive, subkey)
        except FileNotFoundError:
            logger.debug("Registry key already absent: %s", path)

    def change_owner(self, path: str, sid: str) -> None:
        if win32security is None or win32api is None:
            raise RuntimeError("pywin32 is required to change registry key ownership")
        hive, subkey = split_registry_path(path)
        self._enable_privileges(OWNERSHIP_PRIVILEGES)
        object_name = SECURITY_OBJECT_ROOTS[hive]
        if subkey:
            object_name = f"{object_name}\\{subkey}"
        owner = win32security.ConvertStringSidToSid(sid)
        win32security.SetNamedSecurityInfo(
            object_name,
            win32security.SE_REGISTRY_KEY,
            win32security.OWNER_SECURITY_INFORMATION,
            owner,
            None,
            None,
            None,
        )

    def _delete_tree(self, hive: object, subkey: str) -> None:
        with winreg.OpenKey(hive, subkey, 0, winreg.KEY_READ | winreg.KEY_WRITE) as key:  # type: ignore[arg-type]
            children = []
            index = 0
            while True:
                try:
                    children.append(winreg.EnumKey(key, index))
                except OSError:
                    break
                index += 1
        for child in children:
            self._delete_tree(hive, f"{subkey}\\{child}")
        winreg.DeleteKey(hive, subkey)  # type: ignore[arg-type]

    def _enable_privileges(self, names: tuple[str, ...]) -> None:
        token = win32security.OpenProcessToken(
            win32api.GetCurrentProcess(),
            win32security.TOKEN_ADJUST_PRIVILEGES | win32security.TOKEN_QUERY,
        )
        try:
            privileges = [
                (win32security.LookupPrivilegeValue(None, name), win32security.SE_PRIVILEGE_ENABLED)
                for name in names
            ]
            win32security.AdjustTokenPrivileges(token, False, privileges)
        finally:
            win32api.CloseHandle(token)

    def _open_args(self, path: str) -> tuple[object, str]:
        hive_name, subkey = split_registry_path(path)
        hive_map = {
            "HKLM": winreg.HKEY_LOCAL_MACHINE,
            "HKCU": winreg.HKEY_CURRENT_USER,
            "HKCR": winreg.HKEY_CLASSES_ROOT,
            "HKU": winreg.HKEY_USERS,
            "HKCC": winreg.HKEY_CURRENT_CONFIG,
        }
        return hive_map[hive_name], subkey

    def _winreg_type(self, value_type: RegistryValueType) -> int:
        return {
            RegistryValueType.DWORD: winreg.REG_DWORD,
            RegistryValueType.STRING: winreg.REG_SZ,
            RegistryValueType.EXPAND_STRING: winreg.REG_EXPAND_SZ,
            RegistryValueType.BINARY: winreg.REG_BINARY,
            RegistryValueType.MULTI_STRING: winreg.REG_MULTI_SZ,
            RegistryValueType.QWORD: winreg.REG_QWORD,
        }[value_type]


class DefaultUserHive:
    """Loads the default user profile hive under HKU for the duration of a ``with`` block.

    Values written through :meth:`map_path` land in the profile copied to new users;
    existing profiles are not touched.
    """

    def __init__(self, runner: CommandRunner, setting: DefaultUserHiveSetting) -> None:
        self._runner = runner
        self._setting = setting
        self._loaded = False

    @property
    def root(self) -> str:
        return fr"HKU:\{self._setting.mount_key}"

    def map_path(self, path: str) -> str:
        hive, subkey = split_registry_path(path)
        if hive != "HKCU":
            return normalize_registry_path(path)
        return f"{self.root}\\{subkey}" if subkey else self.root

    def __enter__(self) -> "DefaultUserHive":
        load = self._runner.run(["reg", "load", fr"HKU\{self._setting.mount_key}", self._setting.hive_path])
        if load.returncode != 0:
            detail = (load.stderr or load.stdout or "").strip() or "Unknown error"
            raise DefaultsError(f"Default user profile load failed: {detail}")
        self._loaded = True
        logger.debug("Loaded %s at %s", self._setting.hive_path, self.root)
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self._loaded:
            return
        unload = self._runner.run(["reg", "unload", fr"HKU\{self._setting.mount_key}"])
        self._loaded = False
        if unload.returncode != 0:
            detail = (unload.stderr or unload.stdout or "").strip()
            logger.warning("Default user profile unload failed: %s", detail or f"exit {unload.returncode}")
