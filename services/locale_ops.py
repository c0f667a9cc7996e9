"""Language, system locale and time zone changes."""
from __future__ import annotations

from typing import Protocol

from services.runner import CommandRunner, ps_quote, run_checked, run_powershell


class LocaleManager(Protocol):
    def install_language_pack(self, language: str) -> None:  # pragma: no cover - protocol
        ...

    def set_system_locale(self, language: str) -> None:  # pragma: no cover - protocol
        ...

    def set_time_zone(self, name: str) -> None:  # pragma: no cover - protocol
        ...


class PowerShellLocaleManager:
    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def install_language_pack(self, language: str) -> None:
        # Install-Language only exists on Windows 11 / Server 2022 and later
        script = "; ".join(
            [
                "$cmd = Get-Command Install-Language -ErrorAction SilentlyContinue",
                f"if ($cmd) {{ Install-Language -Language {ps_quote(language)} -CopyToSettings -ErrorAction Stop | Out-Null }}",
            ]
        )
        run_powershell(self._runner, script)

    def set_system_locale(self, language: str) -> None:
        quoted = ps_quote(language)
        script = "; ".join(
            [
                "Import-Module -Name International -ErrorAction Stop",
                f"Set-WinSystemLocale -SystemLocale {quoted}",
                f"Set-WinUILanguageOverride -Language {quoted}",
                f"Set-Culture -CultureInfo {quoted}",
                f"$list = New-WinUserLanguageList -Language {quoted}",
                "Set-WinUserLanguageList -LanguageList $list -Force",
                "$copy = Get-Command Copy-UserInternationalSettingsToSystem -ErrorAction SilentlyContinue",
                "if ($copy) { Copy-UserInternationalSettingsToSystem -WelcomeScreen $true -NewUser $true }",
            ]
        )
        run_powershell(self._runner, script)

    def set_time_zone(self, name: str) -> None:
        run_checked(self._runner, ["tzutil", "/s", name])
