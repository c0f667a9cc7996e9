from __future__ import annotations

from pathlib import Path

import pytest

from services.errors import CommandError
from services.locale_ops import PowerShellLocaleManager
from services.platform_ops import DismFeatureManager, LocalFileOperations, PowerShellServiceController
from services.privilege import native_relaunch_command
from services.runner import powershell_command, ps_quote, run_powershell_json

from fakes import FakeRunner


def test_run_powershell_json_normalises_single_object() -> None:
    runner = FakeRunner(default_stdout='{"Name": "one"}')

    assert run_powershell_json(runner, "Get-Thing | ConvertTo-Json") == [{"Name": "one"}]
    assert runner.commands == [tuple(powershell_command("Get-Thing | ConvertTo-Json"))]


def test_failed_command_raises_command_error() -> None:
    runner = FakeRunner(returncodes={("tzutil", "/s", "Nowhere"): 5})

    with pytest.raises(CommandError) as excinfo:
        PowerShellLocaleManager(runner).set_time_zone("Nowhere")

    assert excinfo.value.returncode == 5
    assert excinfo.value.command == ("tzutil", "/s", "Nowhere")
    assert "access denied" in str(excinfo.value)


def test_service_controller_quotes_names() -> None:
    runner = FakeRunner()

    PowerShellServiceController(runner).restart("O'Brien Service")

    script = runner.commands[0][-1]
    assert script == "Restart-Service -Name 'O''Brien Service' -Force -ErrorAction Stop"
    assert ps_quote("plain") == "'plain'"


@pytest.mark.parametrize("stdout, expected", [("True\n", True), ("False", False)])
def test_feature_manager_reads_install_state(stdout: str, expected: bool) -> None:
    runner = FakeRunner(default_stdout=stdout)

    assert DismFeatureManager(runner).is_feature_installed("RDS-RD-Server") is expected
    assert "Get-WindowsFeature -Name 'RDS-RD-Server'" in runner.commands[0][-1]


def test_locale_manager_sets_every_locale_surface() -> None:
    runner = FakeRunner()

    PowerShellLocaleManager(runner).set_system_locale("en-AU")

    script = runner.commands[0][-1]
    for fragment in ("Set-WinSystemLocale -SystemLocale 'en-AU'", "Set-Culture -CultureInfo 'en-AU'", "Set-WinUserLanguageList"):
        assert fragment in script


def test_file_copy_handles_files_and_directories(tmp_path: Path) -> None:
    source_dir = tmp_path / "layouts"
    (source_dir / "nested").mkdir(parents=True)
    (source_dir / "nested" / "start.xml").write_text("<layout/>", encoding="utf-8")
    single = tmp_path / "single.json"
    single.write_text("{}", encoding="utf-8")
    target = tmp_path / "target"
    target.mkdir()
    files = LocalFileOperations()

    files.copy(source_dir, target / "layouts")
    files.copy(source_dir, target / "layouts")
    files.copy(single, target)

    assert (target / "layouts" / "nested" / "start.xml").read_text(encoding="utf-8") == "<layout/>"
    assert (target / "single.json").exists()
    with pytest.raises(FileNotFoundError):
        files.copy(tmp_path / "missing.xml", target)


def test_remove_path_ignores_missing_paths(tmp_path: Path) -> None:
    folder = tmp_path / "folder"
    (folder / "inner").mkdir(parents=True)
    link = tmp_path / "link.lnk"
    link.write_text("x", encoding="utf-8")
    files = LocalFileOperations()

    files.remove_path(folder)
    files.remove_path(link)
    files.remove_path(tmp_path / "absent")

    assert not folder.exists()
    assert not link.exists()


def test_native_relaunch_command_reuses_arguments() -> None:
    assert native_relaunch_command(["install_defaults.py", "--what-if"]) == [
        "py",
        "-3-64",
        "install_defaults.py",
        "--what-if",
    ]
