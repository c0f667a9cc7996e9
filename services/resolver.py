"""Discovery and ordering of configuration documents."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Callable

from services.documents import ConfigDocument, load_document
from services.errors import ConfigDocumentError

logger = logging.getLogger(__name__)

CONFIG_EXTENSION = ".json"


class ApplicabilityTier(IntEnum):
    ALL = 0
    PLATFORM = 1
    BUILD = 2
    MODEL = 3


@dataclass(frozen=True)
class ResolvedDocument:
    tier: ApplicabilityTier
    path: Path
    document: ConfigDocument


@dataclass
class ResolutionResult:
    documents: list[ResolvedDocument] = field(default_factory=list)
    errors: list[ConfigDocumentError] = field(default_factory=list)


class ConfigResolver:
    """Finds ``<Name>.<Tier>.json`` files under a root and loads them general-first."""

    def __init__(
        self,
        root: Path | str,
        *,
        loader: Callable[[Path], ConfigDocument] = load_document,
    ) -> None:
        self._root = Path(root)
        self._loader = loader

    def tier_suffixes(self, platform: str, build: str | int, model: str | None) -> list[tuple[ApplicabilityTier, str]]:
        suffixes = [
            (ApplicabilityTier.ALL, "All"),
            (ApplicabilityTier.PLATFORM, platform),
            (ApplicabilityTier.BUILD, str(build)),
        ]
        if model and model.strip():
            suffixes.append((ApplicabilityTier.MODEL, model.strip()))
        return suffixes

    def discover(self, platform: str, build: str | int, model: str | None) -> list[tuple[ApplicabilityTier, Path]]:
        all_files = self._list_json_files()
        found: list[tuple[ApplicabilityTier, Path]] = []
        for tier, suffix in self.tier_suffixes(platform, build, model):
            if not suffix:
                continue
            ending = f".{suffix}{CONFIG_EXTENSION}".lower()
            matches = [
                path
                for path in all_files
                if path.name.lower().endswith(ending) and len(path.name) > len(ending)
            ]
            logger.debug("Tier %s (*%s): %d file(s)", tier.name, ending, len(matches))
            found.extend((tier, path) for path in matches)
        return found

    def resolve(self, platform: str, build: str | int, model: str | None) -> ResolutionResult:
        result = ResolutionResult()
        for tier, path in self.discover(platform, build, model):
            try:
                document = self._loader(path)
            except ConfigDocumentError as exc:
                logger.error("Skipping configuration %s: %s", path, exc)
                result.errors.append(exc)
                continue
            logger.info("Loaded configuration %s (%s)", path.name, tier.name)
            result.documents.append(ResolvedDocument(tier, path, document))
        return result

    def _list_json_files(self) -> list[Path]:
        if not self._root.is_dir():
            return []
        files: list[Path] = []
        for directory, _dirs, names in os.walk(self._root):
            for name in names:
                if name.lower().endswith(CONFIG_EXTENSION):
                    files.append(Path(directory) / name)
        return sorted(files, key=lambda item: str(item).lower())
