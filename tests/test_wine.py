"""Tests for winecellar.wine: detection, environment construction, Wine commands."""

import pathlib

import pytest

from winecellar.config import WineDebugLevel
from winecellar.errors import (
    ProcessStartError,
    WineBinaryNotFoundError,
    WinebootFailedError,
    WineNotInstalledError,
)
from winecellar.models import WineArch, WinePrefix, WineSource, WineVersion, WindowsVersion
from winecellar.process import ProcessResult
from winecellar.storage import FileSystemManager
from winecellar.wine import WineService, parse_wine_version

from conftest import make_executable, make_wine_root


def _prefix(tmp_path, **kwargs):
    return WinePrefix(name="Test", path=tmp_path / "prefix", **kwargs)


# ── Version parsing ──────────────────────────────────────────────────

@pytest.mark.parametrize("output, expected", [
    ("wine-9.0", "9.0"),
    ("wine-11.0-rc3 (Staging)", "11.0-rc3"),
    ("wine-8.0.1", "8.0.1"),
    ("  something else  ", "something else"),
])
def test_parse_wine_version(output, expected):
    assert parse_wine_version(output) == expected


# ── Detection ────────────────────────────────────────────────────────

class TestDetect:

    def test_common_path(self, wine_service, wine_root):
        versions = wine_service.installed_versions
        assert len(versions) == 1
        assert versions[0].version == "9.0"
        assert versions[0].id == "wine-9.0"
        assert versions[0].path == wine_root
        assert wine_service.default_version == versions[0]

    def test_repeated_scans_are_identical(self, wine_service, file_system):
        make_wine_root(file_system.wine_dir / "wine-b")
        make_wine_root(file_system.wine_dir / "wine-a")
        first = wine_service.detect()
        second = wine_service.detect()
        assert first == second
        assert [v.id for v in first] == ["wine-9.0", "wine-a", "wine-b"]

    def test_managed_versions_use_directory_name(self, wine_service, file_system):
        make_wine_root(file_system.wine_dir / "my-build")
        versions = wine_service.detect()
        managed = wine_service.get_version("my-build")
        assert managed is not None
        assert managed.source is WineSource.CUSTOM
        assert managed in versions

    def test_duplicate_common_paths_are_merged(self, fake_runner, file_system, config, wine_root):
        service = WineService(fake_runner, file_system, config, common_paths=[wine_root, wine_root])
        assert len(service.detect()) == 1

    def test_homebrew_cask(self, fake_runner, config, tmp_path):
        brew = tmp_path / "brew"
        make_executable(brew / "bin" / "brew")
        make_wine_root(brew / "Caskroom" / "wine-stable" / "9.0" / "Wine Stable.app" / "Contents" / "Resources" / "wine")
        make_wine_root(brew / "Caskroom" / "wine-devel" / "9.5" / "Wine.app" / "Contents" / "Resources" / "wine")
        fs = FileSystemManager(app_root=tmp_path / "root", homebrew_paths=[brew])

        versions = WineService(fake_runner, fs, config, common_paths=[]).detect()

        assert [v.id for v in versions] == ["wine-stable-9.0", "wine-devel-9.0"]
        assert versions[0].is_default
        assert not versions[1].is_default
        assert all(v.source is WineSource.GCENX for v in versions)

    def test_version_query_failure_is_unknown(self, fake_runner, file_system, config, wine_root):
        fake_runner.run.side_effect = ProcessStartError("wine64", OSError("exec format error"))
        versions = WineService(fake_runner, file_system, config, common_paths=[wine_root]).detect()
        assert versions[0].version == "Unknown"

    def test_nothing_installed(self, fake_runner, file_system, config, tmp_path):
        service = WineService(fake_runner, file_system, config, common_paths=[tmp_path / "nowhere"])
        assert service.detect() == []
        assert service.default_version is None

    def test_configured_default(self, wine_service, file_system, config):
        make_wine_root(file_system.wine_dir / "pinned")
        wine_service.detect()
        assert wine_service.default_version.id == "wine-9.0"
        config.default_wine_version = "pinned"
        assert wine_service.default_version.id == "pinned"
        config.default_wine_version = "gone"
        assert wine_service.default_version.id == "wine-9.0"

    def test_versions_changed_signal(self, wine_service):
        received = []
        wine_service.versionsChanged.connect(received.append)
        wine_service.detect()
        assert len(received) == 1
        assert received[0] == wine_service.installed_versions


# ── Environment ──────────────────────────────────────────────────────

class TestEnvironment:

    def test_base_variables(self, wine_service, config, tmp_path):
        config.wine_debug_level = WineDebugLevel.WARNINGS
        prefix = _prefix(tmp_path, architecture=WineArch.WIN32, dxvk_enabled=False)

        env = wine_service.build_environment(prefix)

        assert env["WINEPREFIX"] == str(prefix.wine_prefix_path)
        assert env["WINEARCH"] == "win32"
        assert env["WINEDEBUG"] == "warn"
        assert env["WINEDLLOVERRIDES"] == "winemenubuilder.exe=d"
        assert not any(k.startswith("DXVK_") for k in env)

    def test_dxvk_variables_only_when_enabled(self, wine_service, config, tmp_path):
        config.cfg["dxvk_hud"] = ["fps", "memory"]
        env = wine_service.build_environment(_prefix(tmp_path, dxvk_enabled=True))
        assert env["DXVK_HUD"] == "fps,memory"
        assert env["DXVK_ASYNC"] == "1"
        assert env["DXVK_LOG_LEVEL"] == "none"

    def test_prefix_environment_wins(self, wine_service, tmp_path):
        env = wine_service.build_environment(_prefix(tmp_path, environment={"WINEDEBUG": "+relay", "X": "1"}))
        assert env["WINEDEBUG"] == "+relay"
        assert env["X"] == "1"


# ── Execution ────────────────────────────────────────────────────────

class TestRunExecutable:

    def test_delegates_to_runner(self, wine_service, fake_runner, wine_root, tmp_path):
        prefix = _prefix(tmp_path, environment={"A": "prefix"})

        code = wine_service.run_executable("C:\\app.exe", ["-x"], prefix, environment={"A": "caller"})

        assert code == 0
        args, kwargs = fake_runner.run_wine.call_args
        assert args[0] == wine_root / "bin" / "wine64"
        assert args[1] == "C:\\app.exe"
        assert list(args[2]) == ["-x"]
        assert kwargs["prefix_path"] == prefix.wine_prefix_path
        assert kwargs["arch"] is WineArch.WIN64
        assert kwargs["environment"]["A"] == "caller"

    def test_win32_uses_wine_binary(self, wine_service, fake_runner, wine_root, tmp_path):
        wine_service.run_executable("app.exe", prefix=_prefix(tmp_path, architecture=WineArch.WIN32))
        assert fake_runner.run_wine.call_args.args[0] == wine_root / "bin" / "wine"

    def test_no_wine_installed(self, fake_runner, file_system, config, tmp_path):
        service = WineService(fake_runner, file_system, config, common_paths=[])
        with pytest.raises(WineNotInstalledError):
            service.run_executable("app.exe", prefix=_prefix(tmp_path))

    def test_missing_binary(self, wine_service, tmp_path):
        broken = WineVersion(version="1.0", path=tmp_path / "gone", source=WineSource.CUSTOM)
        with pytest.raises(WineBinaryNotFoundError):
            wine_service.run_executable("app.exe", prefix=_prefix(tmp_path), wine_version=broken)

    def test_wineboot(self, wine_service, fake_runner, tmp_path):
        prefix = _prefix(tmp_path)
        wine_service.run_wineboot(prefix, init=True)
        assert fake_runner.run_wine.call_args.args[1:3] == ("wineboot", ["--init"])

        wine_service.run_wineboot(prefix)
        assert fake_runner.run_wine.call_args.args[1:3] == ("wineboot", ["--update"])

    def test_winecfg(self, wine_service, fake_runner, tmp_path):
        assert wine_service.run_winecfg(_prefix(tmp_path)) == 0
        assert fake_runner.run_wine.call_args.args[1] == "winecfg"

    def test_wineboot_failure(self, wine_service, fake_runner, tmp_path):
        fake_runner.run_wine.return_value = 1
        with pytest.raises(WinebootFailedError) as info:
            wine_service.run_wineboot(_prefix(tmp_path), init=True)
        assert info.value.exit_code == 1

    def test_kill_prefix(self, wine_service, fake_runner, wine_root, tmp_path):
        prefix = _prefix(tmp_path)
        wine_service.kill_prefix(prefix)
        args, kwargs = fake_runner.run.call_args
        assert args == (wine_root / "bin" / "wineserver", ["-k"])
        assert kwargs["environment"] == {"WINEPREFIX": str(prefix.wine_prefix_path)}

    def test_kill_prefix_ignores_process_failure(self, wine_service, fake_runner, tmp_path):
        fake_runner.run.side_effect = ProcessStartError("wineserver", OSError("missing"))
        wine_service.kill_prefix(_prefix(tmp_path))


class TestWindowsVersion:

    def test_registry_script(self, wine_service, fake_runner, tmp_path):
        seen = {}

        def capture(wine_binary, executable, arguments, **kwargs):
            reg_file = pathlib.Path(arguments[0])
            seen["path"] = reg_file
            seen["content"] = reg_file.read_text()
            return 0

        fake_runner.run_wine.side_effect = capture

        wine_service.set_windows_version(WindowsVersion.WIN7, _prefix(tmp_path))

        assert fake_runner.run_wine.call_args.args[1] == "regedit"
        assert seen["path"].suffix == ".reg"
        assert not seen["path"].exists()
        content = seen["content"]
        assert content.startswith("Windows Registry Editor Version 5.00\n")
        assert "[HKEY_LOCAL_MACHINE\\Software\\Microsoft\\Windows NT\\CurrentVersion]" in content
        assert '"CurrentVersion"="6.1"' in content
        assert '"ProductName"="Windows 7"' in content
        assert '"Version"="win7"' in content

    def test_registry_script_removed_on_failure(self, wine_service, fake_runner, tmp_path):
        seen = []

        def fail(wine_binary, executable, arguments, **kwargs):
            seen.append(pathlib.Path(arguments[0]))
            raise ProcessStartError("wine64", OSError("boom"))

        fake_runner.run_wine.side_effect = fail

        with pytest.raises(ProcessStartError):
            wine_service.set_windows_version(WindowsVersion.WIN10, _prefix(tmp_path))
        assert not seen[0].exists()
