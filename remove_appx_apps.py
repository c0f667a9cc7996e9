#!/usr/bin/env python3
"""Remove AppX packages, keeping an allow-list (safe mode) or only removing a deny-list (targeted mode)."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from enterprise_defaults.constants import IMMUTABLE_CONFIG
from enterprise_defaults.logging_config import configure_logging
from enterprise_defaults.options import RunOptions
from services.appx import AppxRemovalService, PowerShellPackageStore, SafetyPolicy
from services.privilege import is_admin, needs_native_relaunch, relaunch_native
from services.registry import WindowsRegistryAccessor
from services.runner import SubprocessRunner
from services.system_facts import WindowsSystemFactsProvider

logger = logging.getLogger("remove_appx_apps")


def _split(values: list[str] | None) -> list[str] | None:
    if values is None:
        return None
    names: list[str] = []
    for value in values:
        names.extend(part.strip() for part in value.split(",") if part.strip())
    return names


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Remove AppX packages from the current user or all users.")
    parser.add_argument("--safe-packages", nargs="*", help="Package family names to keep (replaces the default list)")
    parser.add_argument("--safe-wildcards", nargs="*", help="Family name patterns to keep (replaces the default list)")
    parser.add_argument("--targeted", action="store_true", help="Only remove the targeted package list")
    parser.add_argument("--targeted-packages", nargs="*", help="Package family names to remove in targeted mode")
    parser.add_argument("--log-dir", default=IMMUTABLE_CONFIG.defaults.log_directory, help="Directory for the log file")
    parser.add_argument("--what-if", action="store_true", help="List packages that would be removed")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log detail")
    return parser


def policy_from_args(args: argparse.Namespace) -> SafetyPolicy:
    if args.targeted:
        return SafetyPolicy.targeted(_split(args.targeted_packages))
    return SafetyPolicy.safe(_split(args.safe_packages), _split(args.safe_wildcards))


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if needs_native_relaunch():
        return relaunch_native([str(Path(__file__).resolve()), *(sys.argv[1:] if argv is None else argv)])

    options = RunOptions(verbosity=args.verbose, dry_run=args.what_if)
    configure_logging(options, args.log_dir, fallback_dir=Path(__file__).resolve().parent / "logs")
    try:
        runner = SubprocessRunner()
        registry = WindowsRegistryAccessor()
        facts = WindowsSystemFactsProvider(runner, registry).collect()
    except (RuntimeError, ValueError) as exc:
        logger.critical("Cannot initialise: %s", exc)
        return 1

    elevated = is_admin()
    service = AppxRemovalService(
        PowerShellPackageStore(runner),
        registry,
        os_version=facts.os_version,
        elevated=elevated,
        options=options,
    )
    try:
        result = service.remove(policy_from_args(args))
    except (RuntimeError, ValueError) as exc:
        logger.error("Package enumeration failed: %s", exc)
        return 0

    for package in result.removed + result.provisioned_removed:
        print(package.package_family_name)
    step = result.as_step()
    logger.info("%s: %s", step.name, step.detail)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
