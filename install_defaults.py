#!/usr/bin/env python3
"""Apply enterprise defaults to a Windows image from the JSON files under ``configs``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from enterprise_defaults.constants import IMMUTABLE_CONFIG
from enterprise_defaults.logging_config import configure_logging
from enterprise_defaults.options import RunOptions
from services.appx import PowerShellPackageStore
from services.errors import DefaultsError
from services.handlers import SettingHandlers
from services.locale_ops import PowerShellLocaleManager
from services.orchestrator import DefaultsInstaller, InstallRequest
from services.platform_ops import DismFeatureManager, LocalFileOperations, PowerShellServiceController
from services.privilege import is_admin, needs_native_relaunch, relaunch_native
from services.registry import WindowsRegistryAccessor
from services.runner import SubprocessRunner
from services.system_facts import WindowsSystemFactsProvider

logger = logging.getLogger("install_defaults")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Apply enterprise defaults to a Windows desktop or server image.")
    parser.add_argument("--path", default=str(Path(__file__).resolve().parent), help="Working path holding the configs directory")
    parser.add_argument("--language", help="Language/locale to install and set, e.g. en-AU")
    parser.add_argument("--time-zone", help="Windows time zone id, e.g. 'AUS Eastern Standard Time'")
    parser.add_argument("--model", help="Act as if the device is a different hardware model")
    parser.add_argument("--skip-appx", action="store_true", help="Do not remove AppX packages during this run")
    parser.add_argument("--log-dir", default=IMMUTABLE_CONFIG.defaults.log_directory, help="Directory for the log file")
    parser.add_argument("--what-if", action="store_true", help="Log intended changes without making them")
    parser.add_argument("--stop-on-error", action="store_true", help="Abort on the first failed setting")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log detail")
    return parser


def build_installer(request: InstallRequest, options: RunOptions, model: str | None = None) -> DefaultsInstaller:
    runner = SubprocessRunner()
    registry = WindowsRegistryAccessor()
    files = LocalFileOperations()
    handlers = SettingHandlers(
        registry=registry,
        runner=runner,
        services=PowerShellServiceController(runner),
        files=files,
        features=DismFeatureManager(runner),
        options=options,
    )
    return DefaultsInstaller(
        request,
        facts_provider=WindowsSystemFactsProvider(runner, registry, model_override=model),
        registry=registry,
        handlers=handlers,
        package_store=PowerShellPackageStore(runner),
        locale=PowerShellLocaleManager(runner),
        files=files,
        options=options,
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if needs_native_relaunch():
        return relaunch_native([str(Path(__file__).resolve()), *(sys.argv[1:] if argv is None else argv)])

    options = RunOptions(verbosity=args.verbose, dry_run=args.what_if, continue_on_error=not args.stop_on_error)
    working_path = Path(args.path).resolve()
    log_file = configure_logging(options, args.log_dir, fallback_dir=working_path / "logs")
    if log_file:
        logger.info("Logging to %s", log_file)
    if not is_admin():
        logger.warning("Not running elevated; machine-wide settings are likely to fail")

    request = InstallRequest(
        working_path=working_path,
        language=args.language,
        time_zone=args.time_zone,
        remove_appx=not args.skip_appx,
    )
    try:
        installer = build_installer(request, options, args.model)
    except RuntimeError as exc:
        logger.critical("Cannot initialise: %s", exc)
        return 1
    try:
        report = installer.run()
    except DefaultsError as exc:
        logger.critical("%s", exc)
        return 1
    except Exception as exc:
        logger.critical("Unexpected failure: %s", exc, exc_info=True)
        return 1

    for error in report.load_errors:
        logger.warning("Configuration not loaded: %s", error)
    for step in report.failures:
        logger.warning("Failed: %s: %s", step.name, step.detail)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
