"""Top-level driver that resolves, gates and applies configuration documents."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Callable

from enterprise_defaults.constants import FIXED_DEFAULTS_CONFIG, PACKAGE_VERSION, FixedDefaultsConfig
from enterprise_defaults.options import RunOptions
from services.appx import AppxRemovalService, PackageStore, SafetyPolicy
from services.documents import ConfigDocument, RegistryValueType, describe_blocks
from services.errors import ConfigDocumentError, DefaultsError
from services.handlers import HandlerContext, SettingHandlers
from services.locale_ops import LocaleManager
from services.platform_ops import FileOperations
from services.registry import RegistryAccessor
from services.resolver import ConfigResolver, ResolvedDocument
from services.results import ApplyStepResult, attempt_step
from services.system_facts import SystemFacts, SystemFactsProvider

logger = logging.getLogger(__name__)

VERSION_FILE = "VERSION.txt"
RUN_ON_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class InstallRequest:
    working_path: Path
    language: str | None = None
    time_zone: str | None = None
    remove_appx: bool = True


@dataclass
class RunReport:
    facts: SystemFacts | None = None
    documents: list[ResolvedDocument] = field(default_factory=list)
    load_errors: list[ConfigDocumentError] = field(default_factory=list)
    steps: list[ApplyStepResult] = field(default_factory=list)

    @property
    def failures(self) -> list[ApplyStepResult]:
        return [step for step in self.steps if step.failed]


class DefaultsInstaller:
    """Runs one pass: facts, configs, per-document apply, then the once-off image steps."""

    def __init__(
        self,
        request: InstallRequest,
        *,
        facts_provider: SystemFactsProvider,
        registry: RegistryAccessor,
        handlers: SettingHandlers,
        package_store: PackageStore,
        locale: LocaleManager,
        files: FileOperations,
        options: RunOptions | None = None,
        config: FixedDefaultsConfig = FIXED_DEFAULTS_CONFIG,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._request = request
        self._facts_provider = facts_provider
        self._registry = registry
        self._handlers = handlers
        self._package_store = package_store
        self._locale = locale
        self._files = files
        self._options = options or RunOptions()
        self._config = config
        self._clock = clock

    @property
    def config_root(self) -> Path:
        return self._request.working_path / self._config.config_directory

    def run(self) -> RunReport:
        report = RunReport()
        self._check_working_path()
        report.facts = self._resolve_facts()
        resolution = ConfigResolver(self.config_root).resolve(
            report.facts.platform, report.facts.build, report.facts.model
        )
        report.documents = resolution.documents
        report.load_errors = resolution.errors
        context = HandlerContext(self._request.working_path, report.facts)
        for resolved in resolution.documents:
            report.steps.extend(self.apply_document(resolved.document, context))
        report.steps.append(self._remove_packages(report.facts))
        report.steps.extend(self._set_language())
        report.steps.extend(self._set_time_zone())
        report.steps.append(self._persist_for_feature_update())
        report.steps.extend(self._stamp_uninstall_key())
        logger.info(
            "Completed: %d document(s), %d step(s), %d failure(s)",
            len(report.documents),
            len(report.steps),
            len(report.failures),
        )
        return report

    def apply_document(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        reason = document.gate_reason(context.facts.os_version)
        if reason:
            logger.info("Skipping %s: %s", document.source, reason)
            return [ApplyStepResult.skip(document.description or document.source, reason)]
        logger.info(
            "Applying %s: %s [%s]",
            document.source,
            document.description or "no description",
            ", ".join(describe_blocks(document)) or "no settings",
        )
        results: list[ApplyStepResult] = []
        for kind, handler in self._handlers.dispatch_table():
            try:
                results.extend(handler(document, context))
            except Exception as exc:
                logger.error("%s block in %s failed: %s", kind, document.source, exc)
                if not self._options.continue_on_error:
                    raise
                results.append(ApplyStepResult(f"{kind} ({document.source})", False, str(exc)))
        return results

    def read_version(self) -> str:
        path = self._request.working_path / VERSION_FILE
        try:
            return path.read_text(encoding="utf-8").strip() or PACKAGE_VERSION
        except (OSError, UnicodeDecodeError):
            return PACKAGE_VERSION

    def _check_working_path(self) -> None:
        if not self._request.working_path.is_dir():
            raise DefaultsError(f"Working path not found: {self._request.working_path}")
        if not self.config_root.is_dir():
            raise DefaultsError(f"Configuration directory not found: {self.config_root}")

    def _resolve_facts(self) -> SystemFacts:
        try:
            return self._facts_provider.collect()
        except Exception as exc:
            raise DefaultsError(f"Unable to determine system facts: {exc}") from exc

    def _remove_packages(self, facts: SystemFacts) -> ApplyStepResult:
        name = "AppX removal"
        if not self._request.remove_appx:
            return ApplyStepResult.skip(name, "disabled for this run")
        try:
            setup_complete = self._facts_provider.is_setup_complete()
        except Exception as exc:
            logger.warning("Unable to determine whether OOBE is complete, assuming it is: %s", exc)
            setup_complete = True
        if setup_complete:
            reason = "OOBE is complete; run remove_appx_apps.py explicitly to remove AppX packages"
            logger.info("Skipping AppX removal: %s", reason)
            return ApplyStepResult.skip(name, reason)
        try:
            service = AppxRemovalService(
                self._package_store,
                self._registry,
                os_version=facts.os_version,
                elevated=self._facts_provider.is_elevated(),
                options=self._options,
                setting=self._config.appx,
            )
            return service.remove(SafetyPolicy.safe()).as_step()
        except Exception as exc:
            logger.error("AppX removal failed: %s", exc)
            if not self._options.continue_on_error:
                raise
            return ApplyStepResult(name, False, str(exc))

    def _set_language(self) -> list[ApplyStepResult]:
        language = self._request.language
        if not language:
            return []
        return [
            attempt_step(f"Install language pack {language}", partial(self._locale.install_language_pack, language), self._options),
            attempt_step(f"Set system locale {language}", partial(self._locale.set_system_locale, language), self._options),
        ]

    def _set_time_zone(self) -> list[ApplyStepResult]:
        time_zone = self._request.time_zone
        if not time_zone:
            return []
        return [attempt_step(f"Set time zone {time_zone}", partial(self._locale.set_time_zone, time_zone), self._options)]

    def _persist_for_feature_update(self) -> ApplyStepResult:
        name = "Stage for feature updates"
        staging = Path(self._config.feature_update_path)
        working = self._request.working_path
        if _same_path(working, staging):
            return ApplyStepResult.skip(name, f"already running from {staging}")
        if self._staged_version(staging) == self.read_version():
            logger.info("Version %s already staged at %s", self.read_version(), staging)
            return ApplyStepResult.skip(name, f"already present at {staging}")
        return attempt_step(f"Copy {working} to {staging}", partial(self._files.copy, working, staging), self._options)

    def _staged_version(self, staging: Path) -> str | None:
        path = staging / VERSION_FILE
        try:
            return path.read_text(encoding="utf-8").strip() if path.is_file() else None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Unable to read staged version %s, staging again: %s", path, exc)
            return None

    def _stamp_uninstall_key(self) -> list[ApplyStepResult]:
        setting = self._config.uninstall
        values = (
            ("DisplayName", setting.display_name, RegistryValueType.STRING),
            ("DisplayVersion", self.read_version(), RegistryValueType.STRING),
            ("Publisher", setting.publisher, RegistryValueType.STRING),
            ("RunOn", self._clock().strftime(RUN_ON_FORMAT), RegistryValueType.STRING),
            ("SystemComponent", setting.system_component, RegistryValueType.DWORD),
        )
        return [
            attempt_step(
                f"Set {setting.path}\\{value_name}",
                partial(self._registry.set_value, setting.path, value_name, value, value_type),
                self._options,
            )
            for value_name, value, value_type in values
        ]


def _same_path(left: Path, right: Path) -> bool:
    try:
        return left.resolve() == right.resolve()
    except OSError:
        return str(left).lower() == str(right).lower()
