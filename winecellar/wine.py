"""
Wine Runtime Registry.

Discovers installed Wine toolchains (Homebrew casks, common system paths and
versions managed by WineCellar), picks a default and is the single entry
point for running anything inside a prefix: it builds the Wine environment
and hands the call to the ProcessRunner.
"""
import os
import pathlib
import re
import tempfile
import threading
from typing import Dict, List, Optional, Sequence

from PySide6.QtCore import QObject, Signal

from .config import ConfigStore
from .dxvk import DXVKConfiguration
from .errors import (
    ProcessStartError,
    WineBinaryNotFoundError,
    WinebootFailedError,
    WineNotInstalledError,
    attempt,
)
from .logs import LOG_MANAGER
from .models import WinePrefix, WineSource, WineVersion, WindowsVersion
from .process import OutputSink, PathLike, ProcessRunner
from .storage import FileSystemManager

# Common installation paths (each holds bin/wine or bin/wine64)
COMMON_WINE_PATHS = [
    pathlib.Path("/Applications/Wine Stable.app/Contents/Resources/wine"),
    pathlib.Path("/Applications/Wine Devel.app/Contents/Resources/wine"),
    pathlib.Path("/Applications/Wine Staging.app/Contents/Resources/wine"),
    pathlib.Path("/usr/local/opt/wine"),
    pathlib.Path("/opt/homebrew/opt/wine"),
]

# Homebrew casks that ship Wine, and where each version directory keeps it
HOMEBREW_WINE_PACKAGES = ["wine-stable", "wine-devel", "wine-staging", "gcenx-wine-stable"]
HOMEBREW_APP_PATHS = [
    "Wine Stable.app/Contents/Resources/wine",
    "Wine.app/Contents/Resources/wine",
]

VERSION_PATTERN = re.compile(r"wine-[\d.]+([-\w]*)?")


def parse_wine_version(output: str) -> str:
    """Extract "9.0" / "11.0-rc3" from ``wine --version`` output like "wine-9.0"."""
    match = VERSION_PATTERN.search(output)
    if match:
        return match.group(0)[len("wine-"):]
    return output.strip()


class WineService(QObject):
    """
    Registry of installed Wine versions and executor of Wine commands.

    The version list is rebuilt in full by detect(); readers always see a
    complete list.
    """

    versionsChanged = Signal(list)  # Emitted with the new list of WineVersion

    def __init__(
        self,
        runner: ProcessRunner,
        file_system: FileSystemManager,
        config: ConfigStore,
        common_paths: Optional[List[pathlib.Path]] = None,
    ):
        super().__init__()
        self.runner = runner
        self.file_system = file_system
        self.config = config
        self.common_paths = list(common_paths) if common_paths is not None else list(COMMON_WINE_PATHS)
        self._lock = threading.RLock()
        self._installed_versions: List[WineVersion] = []
        self._detected_default: Optional[WineVersion] = None

    @property
    def installed_versions(self) -> List[WineVersion]:
        with self._lock:
            return list(self._installed_versions)

    @property
    def default_version(self) -> Optional[WineVersion]:
        """The configured default if it is installed, else the detected default."""
        with self._lock:
            configured = self.config.default_wine_version
            if configured:
                for version in self._installed_versions:
                    if version.id == configured:
                        return version
            return self._detected_default

    def get_version(self, version_id: str) -> Optional[WineVersion]:
        return next((v for v in self.installed_versions if v.id == version_id), None)

    # ============================================================================
    # Wine detection
    # ============================================================================

    def detect(self) -> List[WineVersion]:
        """
        Rescan all known locations for Wine installations.

        Returns:
            The new list of installed versions (replaces the previous one)
        """
        versions: List[WineVersion] = []

        versions.extend(self._detect_homebrew_wine())

        for path in self.common_paths:
            version = self._detect_wine_at(path)
            if version and not any(v.path == version.path for v in versions):
                versions.append(version)

        versions.extend(self._detect_managed_versions())

        default = next((v for v in versions if v.is_default), versions[0] if versions else None)
        with self._lock:
            self._installed_versions = versions
            self._detected_default = default

        LOG_MANAGER.add_log("INFO", f"Detected {len(versions)} Wine versions", "Wine")
        self.versionsChanged.emit(list(versions))
        return list(versions)

    def _detect_homebrew_wine(self) -> List[WineVersion]:
        caskroom = self.file_system.find_homebrew_caskroom()
        if caskroom is None:
            return []

        versions: List[WineVersion] = []
        for package in HOMEBREW_WINE_PACKAGES:
            package_dir = caskroom / package
            if not package_dir.is_dir():
                continue
            try:
                version_dirs = self.file_system.list_directory(package_dir)
            except OSError as e:
                LOG_MANAGER.add_log("WARNING", f"Error scanning {package_dir}: {e}", "Wine")
                continue

            for version_dir in version_dirs:
                for app_path in HOMEBREW_APP_PATHS:
                    found = self._detect_wine_at(version_dir / app_path)
                    if found:
                        versions.append(WineVersion(
                            id=f"{package}-{found.version}",
                            version=found.version,
                            path=found.path,
                            source=WineSource.GCENX,
                            is_default=not versions,
                        ))
                        break
        return versions

    def _detect_managed_versions(self) -> List[WineVersion]:
        try:
            dirs = self.file_system.get_all_wine_version_directories()
        except OSError as e:
            LOG_MANAGER.add_log("WARNING", f"Error scanning managed Wine versions: {e}", "Wine")
            return []

        versions = []
        for directory in dirs:
            found = self._detect_wine_at(directory)
            if found:
                versions.append(WineVersion(
                    id=directory.name,
                    version=found.version,
                    path=directory,
                    source=WineSource.CUSTOM,
                ))
        return versions

    def _detect_wine_at(self, path: pathlib.Path) -> Optional[WineVersion]:
        wine64 = path / "bin" / "wine64"
        wine = path / "bin" / "wine"
        binary = wine64 if wine64.exists() else wine
        if not binary.exists():
            return None

        version = self._query_wine_version(binary)
        return WineVersion(version=version or "Unknown", path=path, source=WineSource.CUSTOM)

    def _query_wine_version(self, binary: pathlib.Path) -> Optional[str]:
        try:
            result = self.runner.run(binary, ["--version"])
        except ProcessStartError:
            return None
        if not result.is_success:
            return None
        return parse_wine_version(result.output)

    # ============================================================================
    # Wine execution
    # ============================================================================

    def _resolve_version(self, wine_version: Optional[WineVersion]) -> WineVersion:
        wine = wine_version or self.default_version
        if wine is None:
            raise WineNotInstalledError()
        return wine

    def build_environment(self, prefix: WinePrefix) -> Dict[str, str]:
        """Environment for running Wine in prefix, before any caller overlay."""
        env = {
            "WINEPREFIX": str(prefix.wine_prefix_path),
            "WINEARCH": prefix.architecture.value,
            "WINEDEBUG": self.config.wine_debug_level.value,
            # Keep Wine from creating host menu entries and .desktop files
            "WINEDLLOVERRIDES": "winemenubuilder.exe=d",
        }
        if prefix.dxvk_enabled:
            env.update(DXVKConfiguration.from_cfg(self.config.cfg).environment_variables)
        env.update(prefix.environment)
        return env

    def run_executable(
        self,
        executable: str,
        arguments: Sequence[str] = (),
        prefix: Optional[WinePrefix] = None,
        wine_version: Optional[WineVersion] = None,
        environment: Optional[Dict[str, str]] = None,
        on_output: Optional[OutputSink] = None,
        working_directory: Optional[PathLike] = None,
    ) -> int:
        """
        Run a Windows executable (or Wine helper like ``wineboot``) in a prefix.

        Args:
            executable: Windows path, host path or Wine builtin name
            arguments: Arguments passed after the executable
            prefix: Target prefix
            wine_version: Explicit toolchain; defaults to the configured default
            environment: Overlay applied on top of the Wine environment
            on_output: If set, output is streamed to it as it arrives
            working_directory: Host directory to start in

        Returns:
            The process exit code

        Raises:
            WineNotInstalledError: no version given and none installed
            WineBinaryNotFoundError: the version's binary is missing on disk
        """
        if prefix is None:
            raise ValueError("run_executable needs a prefix")
        wine = self._resolve_version(wine_version)

        wine_binary = wine.wine_binary(prefix.architecture)
        if not wine_binary.exists():
            raise WineBinaryNotFoundError(str(wine.path))

        env = self.build_environment(prefix)
        env.update(environment or {})

        LOG_MANAGER.add_log("INFO", f"Running: {executable} in prefix '{prefix.name}'", "Wine")

        return self.runner.run_wine(
            wine_binary,
            executable,
            arguments,
            prefix_path=prefix.wine_prefix_path,
            arch=prefix.architecture,
            environment=env,
            on_output=on_output,
            working_directory=working_directory,
        )

    def run_wineboot(self, prefix: WinePrefix, wine_version: Optional[WineVersion] = None, init: bool = False):
        """Initialize (``--init``) or update (``--update``) a prefix."""
        exit_code = self.run_executable(
            "wineboot", ["--init" if init else "--update"], prefix, wine_version=wine_version
        )
        if exit_code != 0:
            raise WinebootFailedError(exit_code)
        LOG_MANAGER.add_log("INFO", f"Wineboot completed for prefix '{prefix.name}'", "Wine")

    def run_winecfg(self, prefix: WinePrefix, wine_version: Optional[WineVersion] = None) -> int:
        return self.run_executable("winecfg", prefix=prefix, wine_version=wine_version)

    def run_regedit(self, prefix: WinePrefix, reg_file: Optional[PathLike] = None,
                    wine_version: Optional[WineVersion] = None) -> int:
        args = [str(reg_file)] if reg_file else []
        return self.run_executable("regedit", args, prefix, wine_version=wine_version)

    def import_registry(self, content: str, prefix: WinePrefix, name: str = "winecellar",
                        wine_version: Optional[WineVersion] = None) -> int:
        """Write content to a temporary .reg file, import it, and remove the file."""
        fd, reg_file = tempfile.mkstemp(prefix=f"{name}-", suffix=".reg")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            return self.run_regedit(prefix, reg_file, wine_version=wine_version)
        finally:
            attempt(lambda: os.remove(reg_file), f"remove {reg_file}", "Wine")

    def kill_prefix(self, prefix: WinePrefix, wine_version: Optional[WineVersion] = None):
        """Stop every Wine process running in prefix (``wineserver -k``)."""
        wine = self._resolve_version(wine_version)
        env = {"WINEPREFIX": str(prefix.wine_prefix_path)}
        attempt(
            lambda: self.runner.run(wine.wineserver_path, ["-k"], environment=env),
            f"stop wineserver for '{prefix.name}'",
            "Wine",
        )
        LOG_MANAGER.add_log("INFO", f"Killed Wine processes for prefix '{prefix.name}'", "Wine")

    # ============================================================================
    # Windows version configuration
    # ============================================================================

    def set_windows_version(self, version: WindowsVersion, prefix: WinePrefix,
                            wine_version: Optional[WineVersion] = None):
        """Set the Windows version Wine reports inside prefix through a registry import."""
        content = (
            "Windows Registry Editor Version 5.00\n"
            "\n"
            "[HKEY_LOCAL_MACHINE\\Software\\Microsoft\\Windows NT\\CurrentVersion]\n"
            f"\"CurrentVersion\"=\"{version.registry_version}\"\n"
            f"\"ProductName\"=\"{version.display_name}\"\n"
            "\n"
            "[HKEY_CURRENT_USER\\Software\\Wine]\n"
            f"\"Version\"=\"{version.value}\"\n"
        )
        self.import_registry(content, prefix, name="winver", wine_version=wine_version)
        LOG_MANAGER.add_log(
            "INFO", f"Set Windows version to {version.display_name} for prefix '{prefix.name}'", "Wine"
        )
