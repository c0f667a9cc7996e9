from __future__ import annotations

from pathlib import Path

import pytest

from enterprise_defaults.constants import IMMUTABLE_CONFIG
from enterprise_defaults.options import RunOptions
from services.documents import RegistryValueType, parse_document
from services.errors import DefaultsError
from services.handlers import HandlerContext, SettingHandlers, removal_target, resolve_path
from services.platform_ops import LocalFileOperations

from fakes import FakeFeatures, FakeFiles, FakeRegistry, FakeRunner, FakeServices, facts

HIVE = IMMUTABLE_CONFIG.defaults.default_user
DEFAULT_ROOT = fr"HKU:\{HIVE.mount_key}"


def _handlers(
    *,
    registry: FakeRegistry | None = None,
    runner: FakeRunner | None = None,
    services: FakeServices | None = None,
    files: FakeFiles | None = None,
    features: FakeFeatures | None = None,
    options: RunOptions | None = None,
) -> SettingHandlers:
    return SettingHandlers(
        registry=registry or FakeRegistry(),
        runner=runner or FakeRunner(),
        services=services or FakeServices(),
        files=files or FakeFiles(),
        features=features or FakeFeatures(),
        options=options,
    )


def _context(tmp_path: Path, **kwargs: object) -> HandlerContext:
    return HandlerContext(tmp_path, facts(**kwargs))  # type: ignore[arg-type]


def test_direct_registry_sets_then_removes_after_owner_change(tmp_path: Path) -> None:
    registry = FakeRegistry({(r"HKLM:\SOFTWARE\Legacy", "Old"): 1})
    document = parse_document(
        {
            "registry": {
                "type": "Direct",
                "changeOwner": [{"root": "HKLM", "key": r"SOFTWARE\Locked", "sid": "S-1-5-32-544"}],
                "set": [{"path": r"HKEY_LOCAL_MACHINE\SOFTWARE\Policies\Test", "name": "Enabled", "value": 1, "type": "DWord"}],
                "remove": [r"HKLM\SOFTWARE\Legacy"],
            }
        }
    )

    results = _handlers(registry=registry).apply_registry(document, _context(tmp_path))

    assert all(result.success for result in results)
    assert registry.calls == [
        ("owner", r"HKLM:\SOFTWARE\Locked"),
        ("set", r"HKLM:\SOFTWARE\Policies\Test"),
        ("delete", r"HKLM:\SOFTWARE\Legacy"),
    ]
    assert registry.owners == [(r"HKLM:\SOFTWARE\Locked", "S-1-5-32-544")]
    assert registry.types[(r"HKLM:\SOFTWARE\Policies\Test", "Enabled")] is RegistryValueType.DWORD
    assert (r"HKLM:\SOFTWARE\Legacy", "Old") not in registry.values


def test_default_profile_registry_loads_and_unloads_hive(tmp_path: Path) -> None:
    registry = FakeRegistry()
    runner = FakeRunner()
    document = parse_document(
        {
            "registry": {
                "type": "DefaultProfile",
                "set": [
                    {"path": r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Search", "name": "SearchboxTaskbarMode", "value": 1, "type": "DWord"},
                    {"path": r"HKLM:\SOFTWARE\Policies\Test", "name": "Value", "value": "x", "type": "String"},
                ],
                "remove": [r"HKCU:\Software\Legacy"],
            }
        }
    )

    results = _handlers(registry=registry, runner=runner).apply_registry(document, _context(tmp_path))

    assert all(result.success for result in results)
    assert runner.commands == [
        ("reg", "load", fr"HKU\{HIVE.mount_key}", HIVE.hive_path),
        ("reg", "unload", fr"HKU\{HIVE.mount_key}"),
    ]
    assert registry.values[(fr"{DEFAULT_ROOT}\Software\Microsoft\Windows\CurrentVersion\Search", "SearchboxTaskbarMode")] == 1
    assert registry.values[(r"HKLM:\SOFTWARE\Policies\Test", "Value")] == "x"
    assert registry.deleted == [fr"{DEFAULT_ROOT}\Software\Legacy"]


def test_default_profile_load_failure_writes_nothing(tmp_path: Path) -> None:
    registry = FakeRegistry()
    load = ("reg", "load", fr"HKU\{HIVE.mount_key}", HIVE.hive_path)
    runner = FakeRunner(returncodes={load: 1})
    document = parse_document(
        {"registry": {"type": "DefaultProfile", "set": [{"path": r"HKCU:\Software\X", "name": "a", "value": 1, "type": "DWord"}]}}
    )

    results = _handlers(registry=registry, runner=runner).apply_registry(document, _context(tmp_path))

    assert [result.success for result in results] == [False]
    assert "load failed" in results[0].detail
    assert registry.calls == []
    assert runner.commands == [load]


def test_unrecognised_registry_type_is_skipped(tmp_path: Path) -> None:
    registry = FakeRegistry()
    document = parse_document(
        {"registry": {"type": "None", "set": [{"path": r"HKLM:\SOFTWARE\X", "name": "a", "value": 1, "type": "DWord"}]}}
    )

    results = _handlers(registry=registry).apply_registry(document, _context(tmp_path))

    assert [result.skipped for result in results] == [True]
    assert registry.calls == []


def test_failed_registry_write_does_not_stop_later_entries(tmp_path: Path) -> None:
    registry = FakeRegistry()
    registry.denied.add(r"HKLM:\SOFTWARE\Denied")
    document = parse_document(
        {
            "registry": {
                "type": "Direct",
                "set": [
                    {"path": r"HKLM:\SOFTWARE\Denied", "name": "a", "value": 1, "type": "DWord"},
                    {"path": r"HKLM:\SOFTWARE\Allowed", "name": "b", "value": 2, "type": "DWord"},
                ],
            }
        }
    )

    results = _handlers(registry=registry).apply_registry(document, _context(tmp_path))

    assert [result.success for result in results] == [False, True]
    assert registry.values == {(r"HKLM:\SOFTWARE\Allowed", "b"): 2}


def test_stop_on_error_raises(tmp_path: Path) -> None:
    registry = FakeRegistry()
    registry.denied.add(r"HKLM:\SOFTWARE\Denied")
    document = parse_document(
        {"registry": {"type": "Direct", "set": [{"path": r"HKLM:\SOFTWARE\Denied", "name": "a", "value": 1, "type": "DWord"}]}}
    )
    handlers = _handlers(registry=registry, options=RunOptions(continue_on_error=False))

    with pytest.raises(PermissionError):
        handlers.apply_registry(document, _context(tmp_path))


@pytest.mark.parametrize("installed, expected", [(True, "rds.xml"), (False, "server.xml")])
def test_server_start_menu_applies_exactly_one_set(tmp_path: Path, installed: bool, expected: str) -> None:
    files = FakeFiles()
    features = FakeFeatures({"RDS-RD-Server"} if installed else set())
    document = parse_document(
        {
            "startMenu": {
                "type": "Server",
                "feature": "RDS-RD-Server",
                "exists": [{"source": "rds.xml", "destination": "start"}],
                "notExists": [{"source": "server.xml", "destination": "start"}],
            }
        }
    )

    results = _handlers(files=files, features=features).apply_start_menu(
        document, _context(tmp_path, platform="Server", os_name="WindowsServer2022")
    )

    assert features.queries == ["RDS-RD-Server"]
    assert files.copies == [(tmp_path / expected, tmp_path / "start")]
    assert all(result.success for result in results)


def test_client_start_menu_uses_os_name_layout(tmp_path: Path) -> None:
    files = FakeFiles()
    document = parse_document(
        {
            "startMenu": {
                "type": "Client",
                "Windows10": [{"source": "w10.xml", "destination": "start"}],
                "Windows11": [{"source": "w11.json", "destination": "start"}],
            }
        }
    )
    handlers = _handlers(files=files)

    handlers.apply_start_menu(document, _context(tmp_path, version=(10, 0, 22631, 0), os_name="Windows11"))
    missing = handlers.apply_start_menu(document, _context(tmp_path, os_name="Windows12"))

    assert files.copies == [(tmp_path / "w11.json", tmp_path / "start")]
    assert [result.skipped for result in missing] == [True]


def test_list_blocks_continue_after_failures(tmp_path: Path) -> None:
    services = FakeServices(missing={"Missing"})
    features = FakeFeatures()
    files = FakeFiles()
    document = parse_document(
        {
            "paths": {"remove": ["Desktop/Old.lnk"]},
            "features": {"disable": ["SMB1Protocol"]},
            "capabilities": {"remove": ["App.StepsRecorder"]},
            "packages": {"remove": ["Microsoft-Windows-Hello-Face"]},
            "services": {"stop": ["Missing", "Spooler"], "start": ["W32Time"], "restart": ["Themes"]},
        }
    )
    handlers = _handlers(services=services, features=features, files=files)
    context = _context(tmp_path)

    results = []
    for _kind, handler in handlers.dispatch_table():
        results.extend(handler(document, context))

    assert [result.success for result in results] == [True, True, True, True, False, True, True, True]
    assert files.removed == [tmp_path / "Desktop" / "Old.lnk"]
    assert features.disabled == ["SMB1Protocol"]
    assert features.capabilities == ["App.StepsRecorder"]
    assert features.packages == ["Microsoft-Windows-Hello-Face"]
    assert services.calls == [("stop", "Spooler"), ("start", "W32Time"), ("restart", "Themes")]


def test_dry_run_makes_no_changes(tmp_path: Path) -> None:
    registry = FakeRegistry()
    runner = FakeRunner()
    services = FakeServices()
    files = FakeFiles()
    document = parse_document(
        {
            "registry": {"type": "DefaultProfile", "set": [{"path": r"HKCU:\Software\X", "name": "a", "value": 1, "type": "DWord"}]},
            "files": {"copy": [{"source": "a", "destination": "b"}]},
            "services": {"restart": ["Themes"]},
        }
    )
    handlers = _handlers(registry=registry, runner=runner, services=services, files=files, options=RunOptions(dry_run=True))
    context = _context(tmp_path)

    results = []
    for _kind, handler in handlers.dispatch_table():
        results.extend(handler(document, context))

    assert len(results) == 3
    assert all(result.skipped for result in results)
    assert fr"{DEFAULT_ROOT}\Software\X" in results[0].name
    assert registry.calls == []
    assert runner.commands == []
    assert services.calls == []
    assert files.copies == []


def test_resolve_path_expands_variables(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEFAULTS_TEST_DIR", str(tmp_path / "target"))

    assert resolve_path("layouts/start.xml", tmp_path) == tmp_path / "layouts" / "start.xml"
    assert resolve_path("$DEFAULTS_TEST_DIR/start.xml", Path("/unused")) == tmp_path / "target" / "start.xml"


def test_path_removal_never_deletes_the_working_tree(tmp_path: Path) -> None:
    working = tmp_path / "package"
    (working / "configs").mkdir(parents=True)
    (working / "Old.lnk").write_text("stale", encoding="utf-8")
    document = parse_document({"paths": {"remove": [".", "configs/..", str(tmp_path), "", "Old.lnk"]}})
    handlers = SettingHandlers(
        registry=FakeRegistry(),
        runner=FakeRunner(),
        services=FakeServices(),
        files=LocalFileOperations(),
        features=FakeFeatures(),
    )

    results = handlers.apply_path_removals(document, HandlerContext(working, facts()))

    assert [result.success for result in results] == [False, False, False, True]
    assert "Refusing to remove" in results[0].detail
    assert (working / "configs").is_dir()
    assert not (working / "Old.lnk").exists()


def test_path_removal_of_working_tree_raises_when_stopping_on_error(tmp_path: Path) -> None:
    files = FakeFiles()
    document = parse_document({"paths": {"remove": [str(tmp_path)]}})
    handlers = _handlers(files=files, options=RunOptions(continue_on_error=False))

    with pytest.raises(DefaultsError, match="working path"):
        handlers.apply_path_removals(document, _context(tmp_path))
    assert files.removed == []


def test_removal_target_rejects_blank_and_parent_paths(tmp_path: Path) -> None:
    working = tmp_path / "package"

    with pytest.raises(DefaultsError, match="blank"):
        removal_target("  ", working)
    with pytest.raises(DefaultsError):
        removal_target("..", working)
    assert removal_target("Desktop/Old.lnk", working) == working / "Desktop" / "Old.lnk"


def test_blank_service_names_issue_no_commands(tmp_path: Path) -> None:
    services = FakeServices()
    document = parse_document({"services": {"stop": "", "start": "W32Time", "restart": ["", " "]}})

    handlers = _handlers(services=services)
    results = []
    for _kind, handler in handlers.dispatch_table():
        results.extend(handler(document, _context(tmp_path)))

    assert services.calls == [("start", "W32Time")]
    assert len(results) == 1
