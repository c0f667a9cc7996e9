"""Setting handlers: one applier per configuration block kind."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Callable, Iterable, Sequence

from enterprise_defaults.constants import IMMUTABLE_CONFIG
from enterprise_defaults.options import RunOptions
from services.documents import (
    ClientStartMenu,
    ConfigDocument,
    CopySpec,
    RegistryBlock,
    RegistryBlockType,
    ServerStartMenu,
)
from services.errors import DefaultsError
from services.platform_ops import FeatureManager, FileOperations, ServiceController
from services.registry import DefaultUserHive, RegistryAccessor, normalize_registry_path
from services.results import ApplyStepResult, attempt_step
from services.runner import CommandRunner
from services.system_facts import SystemFacts

logger = logging.getLogger(__name__)

BlockHandler = Callable[[ConfigDocument, "HandlerContext"], list[ApplyStepResult]]


@dataclass(frozen=True)
class HandlerContext:
    working_path: Path
    facts: SystemFacts


class SettingHandlers:
    def __init__(
        self,
        *,
        registry: RegistryAccessor,
        runner: CommandRunner,
        services: ServiceController,
        files: FileOperations,
        features: FeatureManager,
        options: RunOptions | None = None,
        hive_factory: Callable[[], DefaultUserHive] | None = None,
    ) -> None:
        self._registry = registry
        self._services = services
        self._files = files
        self._features = features
        self._options = options or RunOptions()
        self._hive_factory = hive_factory or (
            lambda: DefaultUserHive(runner, IMMUTABLE_CONFIG.defaults.default_user)
        )

    def dispatch_table(self) -> list[tuple[str, BlockHandler]]:
        """Block kinds in the order they are applied within one document."""
        return [
            ("registry", self.apply_registry),
            ("startMenu", self.apply_start_menu),
            ("files.copy", self.apply_file_copies),
            ("paths.remove", self.apply_path_removals),
            ("features.disable", self.apply_feature_disables),
            ("capabilities.remove", self.apply_capability_removals),
            ("packages.remove", self.apply_package_removals),
            ("services.stop", self.apply_service_stops),
            ("services.start", self.apply_service_starts),
            ("services.restart", self.apply_service_restarts),
        ]

    def apply_registry(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        block = document.registry
        if block is None:
            return []
        results = []
        for owner in block.change_owner:
            path = normalize_registry_path(f"{owner.root}\\{owner.key}")
            results.append(
                self._attempt(f"Change owner of {path} to {owner.sid}", partial(self._registry.change_owner, path, owner.sid))
            )
        if block.block_type is RegistryBlockType.DEFAULT_PROFILE:
            results.extend(self._apply_default_profile(block))
        elif block.block_type is RegistryBlockType.DIRECT:
            results.extend(self._apply_registry_entries(block, normalize_registry_path))
        else:
            reason = f"registry type {block.raw_type or 'None'!r} in {document.source} is not applied"
            logger.info("Skipping %s", reason)
            results.append(ApplyStepResult.skip("Registry", reason))
        return results

    def apply_start_menu(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        block = document.start_menu
        if isinstance(block, ServerStartMenu):
            try:
                installed = self._features.is_feature_installed(block.feature)
            except Exception as exc:
                logger.warning("Unable to query feature %s: %s", block.feature, exc)
                if not self._options.continue_on_error:
                    raise
                return [ApplyStepResult(f"Query feature {block.feature}", False, str(exc))]
            copies = block.exists if installed else block.not_exists
            logger.info(
                "Feature %s is %s; applying the %s start menu set",
                block.feature,
                "installed" if installed else "not installed",
                "exists" if installed else "notExists",
            )
            return self._copy_all(copies, context.working_path)
        if isinstance(block, ClientStartMenu):
            copies = block.layout_for(context.facts.os_name)
            if not copies:
                reason = f"no start menu layout for {context.facts.os_name} in {document.source}"
                logger.info("Skipping %s", reason)
                return [ApplyStepResult.skip("Start menu", reason)]
            return self._copy_all(copies, context.working_path)
        return []

    def apply_file_copies(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        return self._copy_all(document.files_copy, context.working_path)

    def apply_path_removals(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        results = []
        for raw in document.paths_remove:
            try:
                path = removal_target(raw, context.working_path)
            except DefaultsError as exc:
                logger.error("%s", exc)
                if not self._options.continue_on_error:
                    raise
                results.append(ApplyStepResult(f"Remove path {raw}", False, str(exc)))
                continue
            results.append(self._attempt(f"Remove path {path}", partial(self._files.remove_path, path)))
        return results

    def apply_feature_disables(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        return self._each("Disable feature", document.features_disable, self._features.disable_feature)

    def apply_capability_removals(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        return self._each("Remove capability", document.capabilities_remove, self._features.remove_capability)

    def apply_package_removals(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        return self._each("Remove Windows package", document.packages_remove, self._features.remove_package)

    def apply_service_stops(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        return self._each("Stop service", document.services.stop, self._services.stop)

    def apply_service_starts(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        return self._each("Start service", document.services.start, self._services.start)

    def apply_service_restarts(self, document: ConfigDocument, context: HandlerContext) -> list[ApplyStepResult]:
        return self._each("Restart service", document.services.restart, self._services.restart)

    def _apply_default_profile(self, block: RegistryBlock) -> list[ApplyStepResult]:
        hive = self._hive_factory()
        if self._options.dry_run:
            return self._apply_registry_entries(block, hive.map_path)
        try:
            with hive:
                return self._apply_registry_entries(block, hive.map_path)
        except DefaultsError as exc:
            logger.error("%s", exc)
            if not self._options.continue_on_error:
                raise
            return [ApplyStepResult("Default user profile", False, str(exc))]

    def _apply_registry_entries(self, block: RegistryBlock, map_path: Callable[[str], str]) -> list[ApplyStepResult]:
        results = []
        for entry in block.set_entries:
            path = map_path(entry.path)
            action = partial(self._registry.set_value, path, entry.name, entry.value, entry.value_type)
            results.append(self._attempt(f"Set {path}\\{entry.name} ({entry.value_type.value}) = {entry.value!r}", action))
        for key in block.remove:
            path = map_path(key)
            results.append(self._attempt(f"Remove registry key {path}", partial(self._registry.delete_key, path)))
        return results

    def _copy_all(self, copies: Sequence[CopySpec], working_path: Path) -> list[ApplyStepResult]:
        results = []
        for spec in copies:
            source = resolve_path(spec.source, working_path)
            destination = resolve_path(spec.destination, working_path)
            results.append(self._attempt(f"Copy {source} to {destination}", partial(self._files.copy, source, destination)))
        return results

    def _each(self, label: str, names: Iterable[str], operation: Callable[[str], None]) -> list[ApplyStepResult]:
        return [self._attempt(f"{label} {name}", partial(operation, name)) for name in names]

    def _attempt(self, name: str, action: Callable[[], object]) -> ApplyStepResult:
        return attempt_step(name, action, self._options)


def resolve_path(raw: str, working_path: Path) -> Path:
    expanded = Path(os.path.expandvars(raw))
    if expanded.is_absolute() or expanded.drive:
        return expanded
    return working_path / expanded


def removal_target(raw: str, working_path: Path) -> Path:
    """Resolve a path to remove, refusing the working tree itself or any folder above it."""
    if not raw.strip():
        raise DefaultsError("Refusing to remove a blank path")
    path = resolve_path(raw, working_path)
    working = working_path.resolve()
    target = path.resolve()
    if target == working or target in working.parents:
        raise DefaultsError(f"Refusing to remove {path}: it contains the working path {working_path}")
    return path
