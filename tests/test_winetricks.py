"""Tests for winecellar.winetricks: verb catalog, helper resolution, per-verb installs."""

import os
from unittest.mock import MagicMock

import pytest

from winecellar.models import WineArch, WinePrefix, WineSource, WineVersion
from winecellar.downloads import WINETRICKS_URL
from winecellar.process import ProcessResult
from winecellar.winetricks import (
    GAME_DEPENDENCIES,
    WinetricksCategory,
    WinetricksService,
    WinetricksVerb,
    catalog,
)

from conftest import make_executable


@pytest.fixture
def downloads():
    def fake_download(url, destination):
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text("#!/bin/sh\n")
        return destination

    d = MagicMock()
    d.download.side_effect = fake_download
    return d


@pytest.fixture
def service(fake_runner, downloads, file_system):
    return WinetricksService(fake_runner, downloads, file_system)


@pytest.fixture
def cached(file_system):
    return make_executable(file_system.winetricks_dir / "winetricks")


@pytest.fixture
def prefix(tmp_path):
    return WinePrefix(name="Games", path=tmp_path / "prefix", architecture=WineArch.WIN32)


# ── Catalog ──────────────────────────────────────────────────────────

class TestCatalog:

    @pytest.mark.parametrize("verb, category", [
        (WinetricksVerb.COREFONTS, WinetricksCategory.FONTS),
        (WinetricksVerb.VCRUN2022, WinetricksCategory.VCPP),
        (WinetricksVerb.DOTNETDESKTOP7, WinetricksCategory.DOTNET),
        (WinetricksVerb.D3DCOMPILER_47, WinetricksCategory.DIRECTX),
        (WinetricksVerb.DXVK, WinetricksCategory.DIRECTX),
        (WinetricksVerb.PHYSX, WinetricksCategory.OTHER),
        (WinetricksVerb.DOTNET48, WinetricksCategory.DOTNET),
    ])
    def test_categories(self, verb, category):
        assert verb.category is category

    def test_every_verb_has_a_display_name(self):
        assert all(v.display_name for v in WinetricksVerb)
        assert WinetricksVerb.XLIVE.display_name == "Games for Windows Live"

    def test_catalog_groups_all_verbs(self):
        groups = catalog()
        assert list(groups) == list(WinetricksCategory)
        assert sum(len(v) for v in groups.values()) == len(WinetricksVerb)
        assert len(groups[WinetricksCategory.FONTS]) == 7
        assert groups[WinetricksCategory.VCPP][0] is WinetricksVerb.VCRUN6

    def test_category_labels(self):
        assert [c.value for c in WinetricksCategory] == [
            "Fonts", "Visual C++ Runtime", ".NET Framework", "DirectX", "Other",
        ]


# ── Helper resolution ────────────────────────────────────────────────

class TestEnsureAvailable:

    def test_prefers_cached_copy(self, service, fake_runner, cached):
        fake_runner.which.return_value = "/usr/bin/winetricks"
        assert service.ensure_winetricks_available() == cached
        fake_runner.which.assert_not_called()

    def test_falls_back_to_system(self, service, fake_runner, downloads, tmp_path):
        system = make_executable(tmp_path / "bin" / "winetricks")
        fake_runner.which.return_value = system
        assert service.ensure_winetricks_available() == system
        downloads.download.assert_not_called()

    def test_downloads_and_marks_executable(self, service, downloads, file_system):
        path = service.ensure_winetricks_available()
        assert path == file_system.winetricks_dir / "winetricks"
        assert downloads.download.call_args.args[0] == WINETRICKS_URL
        assert os.stat(path).st_mode & 0o777 == 0o755

    def test_memoized(self, service, fake_runner, tmp_path):
        system = make_executable(tmp_path / "bin" / "winetricks")
        fake_runner.which.return_value = system
        service.ensure_winetricks_available()
        service.ensure_winetricks_available()
        assert fake_runner.which.call_count == 1


# ── Installation ─────────────────────────────────────────────────────

class TestInstall:

    def test_one_call_per_verb(self, service, fake_runner, cached, prefix):
        results = service.install(["corefonts", WinetricksVerb.VCRUN2019], prefix)

        assert results == {"corefonts": 0, "vcrun2019": 0}
        calls = fake_runner.run_streaming.call_args_list
        assert [c.args for c in calls] == [(cached, ["-q", "corefonts"]), (cached, ["-q", "vcrun2019"])]
        env = calls[0].kwargs["environment"]
        assert env == {"WINEPREFIX": str(prefix.wine_prefix_path), "WINEARCH": "win32", "WINEDEBUG": "-all"}

    def test_explicit_wine_version(self, service, fake_runner, cached, prefix, wine_root):
        version = WineVersion(version="9.0", path=wine_root, source=WineSource.CUSTOM)
        service.install(["corefonts"], prefix, wine_version=version)
        env = fake_runner.run_streaming.call_args.kwargs["environment"]
        assert env["WINE"] == str(wine_root / "bin" / "wine")
        assert env["WINESERVER"] == str(wine_root / "bin" / "wineserver")

    def test_failed_verb_does_not_stop_batch(self, service, fake_runner, cached, prefix):
        fake_runner.run_streaming.side_effect = [1, 0, 0]
        results = service.install(["a", "b", "c"], prefix)
        assert results == {"a": 1, "b": 0, "c": 0}

    def test_output_is_forwarded(self, service, fake_runner, cached, prefix):
        sink = MagicMock()
        service.install(["corefonts"], prefix, on_output=sink)
        assert fake_runner.run_streaming.call_args.kwargs["on_output"] is sink

    def test_steam_bundle(self, service, fake_runner, cached, prefix):
        results = service.install_steam_dependencies(prefix)
        assert list(results) == ["corefonts", "vcrun2022", "d3dcompiler_47"]

    def test_game_bundle(self, service, cached, prefix):
        results = service.install_game_dependencies(prefix)
        assert list(results) == [v.value for v in GAME_DEPENDENCIES]
        assert "physx" in results and "xact" in results

    def test_dotnet(self, service, cached, prefix):
        assert list(service.install_dotnet(prefix)) == ["dotnet48"]
        assert list(service.install_dotnet(prefix, WinetricksVerb.DOTNET40)) == ["dotnet40"]

    def test_list_available_verbs(self, service, fake_runner, cached):
        fake_runner.run.return_value = ProcessResult(0, "corefonts\n\nvcrun2022", "", 0.1)
        assert service.list_available_verbs() == ["corefonts", "vcrun2022"]
        assert fake_runner.run.call_args.args == (cached, ["list-all"])
