from __future__ import annotations

import json
from pathlib import Path

import pytest

from services.documents import ClientStartMenu, CopySpec, ServerStartMenu, StartMenuBlock
from services.resolver import ApplicabilityTier, ConfigResolver


def _write(root: Path, relative: str, data: object) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_resolve_orders_general_to_specific(tmp_path: Path) -> None:
    _write(tmp_path, "aa.SurfaceX.json", {"description": "model"})
    _write(tmp_path, "bb.19041.json", {"description": "build"})
    _write(tmp_path, "cc.Server.json", {"description": "platform"})
    _write(tmp_path, "dd.All.json", {"description": "all"})

    result = ConfigResolver(tmp_path).resolve("Server", 19041, "SurfaceX")

    assert [item.document.description for item in result.documents] == ["all", "platform", "build", "model"]
    assert [item.tier for item in result.documents] == [
        ApplicabilityTier.ALL,
        ApplicabilityTier.PLATFORM,
        ApplicabilityTier.BUILD,
        ApplicabilityTier.MODEL,
    ]
    assert result.errors == []


def test_resolve_filters_other_platforms_builds_and_models(tmp_path: Path) -> None:
    _write(tmp_path, "Explorer.All.json", {})
    _write(tmp_path, "Explorer.Client.json", {})
    _write(tmp_path, "Explorer.22000.json", {})
    _write(tmp_path, "Explorer.OtherModel.json", {})
    _write(tmp_path, "All.json", {})
    _write(tmp_path, "notes.txt", "ignored")

    found = ConfigResolver(tmp_path).discover("Server", "19041", "SurfaceX")

    assert [path.name for _tier, path in found] == ["Explorer.All.json"]


def test_resolve_walks_subdirectories_and_keeps_same_base_names(tmp_path: Path) -> None:
    _write(tmp_path, "b/Registry.All.json", {"description": "b-all"})
    _write(tmp_path, "a/Registry.All.json", {"description": "a-all"})
    _write(tmp_path, "Registry.client.JSON", {"description": "client"})

    result = ConfigResolver(tmp_path).resolve("Client", 22631, None)

    assert [item.document.description for item in result.documents] == ["a-all", "b-all", "client"]


def test_resolve_skips_model_tier_without_model(tmp_path: Path) -> None:
    resolver = ConfigResolver(tmp_path)

    assert [tier for tier, _suffix in resolver.tier_suffixes("Client", 19045, "  ")] == [
        ApplicabilityTier.ALL,
        ApplicabilityTier.PLATFORM,
        ApplicabilityTier.BUILD,
    ]


def test_resolve_continues_after_bad_document(tmp_path: Path) -> None:
    broken = tmp_path / "Broken.All.json"
    broken.write_text("{", encoding="utf-8")
    _write(tmp_path, "Good.All.json", {"description": "good"})

    result = ConfigResolver(tmp_path).resolve("Client", 19045, "SurfaceX")

    assert [item.document.description for item in result.documents] == ["good"]
    assert len(result.errors) == 1
    assert result.errors[0].source == str(broken)


def test_resolve_missing_root_yields_nothing(tmp_path: Path) -> None:
    result = ConfigResolver(tmp_path / "missing").resolve("Client", 19045, None)

    assert result.documents == []
    assert result.errors == []


@pytest.mark.parametrize("platform, build", [("Client", 19045), ("Client", 22631), ("Server", 20348)])
def test_shipped_configs_load(platform: str, build: int) -> None:
    root = Path(__file__).resolve().parents[1] / "configs"

    result = ConfigResolver(root).resolve(platform, build, None)

    assert result.errors == []
    assert result.documents
    for item in result.documents:
        for copy in _start_menu_copies(item.document.start_menu):
            assert (root.parent / copy.source.replace("\\", "/")).exists(), copy.source


def _start_menu_copies(block: StartMenuBlock | None) -> list[CopySpec]:
    if isinstance(block, ServerStartMenu):
        return [*block.exists, *block.not_exists]
    if isinstance(block, ClientStartMenu):
        return [copy for copies in block.layouts.values() for copy in copies]
    return []
