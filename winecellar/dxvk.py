"""
DXVK management.

DXVK translates Direct3D 9/10/11 to Vulkan. Installing it into a prefix means
dropping its DLLs into the prefix's system directories and telling Wine to
prefer them over its builtin versions.
"""
import pathlib
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

import requests

from .downloads import DownloadService, dxvk_url
from .errors import (
    DXVKDownloadError,
    DXVKExtractionError,
    DXVKInstallationError,
    DownloadHTTPError,
    attempt,
)
from .logs import LOG_MANAGER
from .models import WinePrefix
from .process import ProcessRunner
from .storage import FileSystemManager

if TYPE_CHECKING:
    from .wine import WineService

LATEST_VERSION = "2.4"

DLL_NAMES = ["d3d9.dll", "d3d10core.dll", "d3d11.dll", "dxgi.dll"]

# Wine's builtin dxgi.dll stub is far smaller than the real DXVK one
MIN_DXGI_SIZE = 200_000

DLL_OVERRIDES_REG = (
    "Windows Registry Editor Version 5.00\n"
    "\n"
    "[HKEY_CURRENT_USER\\Software\\Wine\\DllOverrides]\n"
    "\"d3d9\"=\"native,builtin\"\n"
    "\"d3d10core\"=\"native,builtin\"\n"
    "\"d3d11\"=\"native,builtin\"\n"
    "\"dxgi\"=\"native,builtin\"\n"
)


# ================================================================================
# Runtime configuration
# ================================================================================

class DXVKHudElement(Enum):
    FPS = "fps"
    FRAMETIMES = "frametimes"
    SUBMISSIONS = "submissions"
    DRAWCALLS = "drawcalls"
    PIPELINES = "pipelines"
    MEMORY = "memory"
    GPULOAD = "gpuload"
    VERSION = "version"
    DEVINFO = "devinfo"

    @property
    def display_name(self) -> str:
        return {
            DXVKHudElement.FPS: "FPS Counter",
            DXVKHudElement.FRAMETIMES: "Frame Times",
            DXVKHudElement.SUBMISSIONS: "Submissions",
            DXVKHudElement.DRAWCALLS: "Draw Calls",
            DXVKHudElement.PIPELINES: "Pipelines",
            DXVKHudElement.MEMORY: "Memory Usage",
            DXVKHudElement.GPULOAD: "GPU Load",
            DXVKHudElement.VERSION: "Version",
            DXVKHudElement.DEVINFO: "Device Info",
        }[self]


class DXVKLogLevel(Enum):
    NONE = "none"
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


@dataclass
class DXVKConfiguration:
    hud_enabled: bool = False
    hud_elements: List[DXVKHudElement] = field(default_factory=list)
    async_shader_compilation: bool = True
    log_level: DXVKLogLevel = DXVKLogLevel.NONE

    @property
    def environment_variables(self) -> Dict[str, str]:
        env = {}
        if self.hud_enabled:
            elements = [e.value for e in self.hud_elements] or ["fps"]
            env["DXVK_HUD"] = ",".join(elements)
        if self.async_shader_compilation:
            env["DXVK_ASYNC"] = "1"
        env["DXVK_LOG_LEVEL"] = self.log_level.value
        return env

    @staticmethod
    def from_cfg(cfg: dict) -> "DXVKConfiguration":
        """Build from the ``dxvk_*`` settings; an empty HUD list turns the HUD off."""
        elements = []
        for name in cfg.get("dxvk_hud") or []:
            try:
                elements.append(DXVKHudElement(name))
            except ValueError:
                LOG_MANAGER.add_log("WARNING", f"Unknown DXVK HUD element: {name}", "Wine")
        try:
            log_level = DXVKLogLevel(cfg.get("dxvk_log_level", "none"))
        except ValueError:
            log_level = DXVKLogLevel.NONE
        return DXVKConfiguration(
            hud_enabled=bool(elements),
            hud_elements=elements,
            async_shader_compilation=bool(cfg.get("dxvk_async", True)),
            log_level=log_level,
        )


# ================================================================================
# Installation
# ================================================================================

def _system32(prefix: WinePrefix) -> pathlib.Path:
    return prefix.drive_c_path / "windows" / "system32"


def _syswow64(prefix: WinePrefix) -> pathlib.Path:
    return prefix.drive_c_path / "windows" / "syswow64"


class DXVKService:
    """Installs, removes and detects DXVK inside prefixes."""

    def __init__(
        self,
        runner: ProcessRunner,
        downloads: DownloadService,
        file_system: FileSystemManager,
        wine: "WineService",
    ):
        self.runner = runner
        self.downloads = downloads
        self.file_system = file_system
        self.wine = wine

    def install(
        self,
        prefix: WinePrefix,
        version: str = LATEST_VERSION,
        on_progress: Optional[Callable[[str], None]] = None,
    ):
        """
        Install DXVK version into prefix.

        Args:
            prefix: Target prefix
            version: DXVK release, e.g. "2.4"
            on_progress: Receives a short status message before each step

        Raises:
            DXVKDownloadError, DXVKExtractionError, DXVKInstallationError
        """
        def report(message: str):
            if on_progress:
                on_progress(message)

        LOG_MANAGER.add_log("INFO", f"Installing DXVK {version} in prefix '{prefix.name}'", "Wine")

        report(f"Downloading DXVK {version}...")
        archive = self._download(version)

        report("Extracting DXVK...")
        extract_dir = self._extract(archive, version)

        report("Installing DXVK DLLs...")
        try:
            self._install_dlls(extract_dir, prefix)
        except OSError as e:
            raise DXVKInstallationError(str(e)) from e

        report("Configuring DLL overrides...")
        self.wine.import_registry(DLL_OVERRIDES_REG, prefix, name="dxvk-overrides")

        LOG_MANAGER.add_log("INFO", f"DXVK {version} installed successfully", "Wine")

    def uninstall(self, prefix: WinePrefix):
        """Remove the DXVK DLLs from both system directories; missing files are ignored."""
        LOG_MANAGER.add_log("INFO", f"Removing DXVK from prefix '{prefix.name}'", "Wine")
        for dll in DLL_NAMES:
            for directory in (_system32(prefix), _syswow64(prefix)):
                path = directory / dll
                attempt(lambda: self.file_system.delete(path), f"delete {path}", "Wine")
        LOG_MANAGER.add_log("INFO", f"DXVK removed from prefix '{prefix.name}'", "Wine")

    def is_installed(self, prefix: WinePrefix) -> bool:
        """Heuristic: a DXVK dxgi.dll is present when it is larger than the builtin stub."""
        dxgi = _system32(prefix) / "dxgi.dll"
        try:
            return dxgi.stat().st_size > MIN_DXGI_SIZE
        except OSError:
            return False

    def installed_version(self, prefix: WinePrefix) -> Optional[str]:
        # The DLLs carry no readable version, only presence is known
        return "Installed" if self.is_installed(prefix) else None

    # ============================================================================
    # Helpers
    # ============================================================================

    def _download(self, version: str) -> pathlib.Path:
        destination = self.file_system.downloads_dir / f"dxvk-{version}.tar.gz"
        if destination.exists():
            return destination
        try:
            return self.downloads.download(dxvk_url(version), destination)
        except (DownloadHTTPError, requests.RequestException, OSError) as e:
            raise DXVKDownloadError(str(e)) from e

    def _extract(self, archive: pathlib.Path, version: str) -> pathlib.Path:
        cache_dir = self.file_system.cache_dir
        extract_dir = cache_dir / f"dxvk-{version}"
        if extract_dir.is_dir():
            return extract_dir

        result = self.runner.run_shell(
            f"tar -xzf {shlex.quote(str(archive))} -C {shlex.quote(str(cache_dir))}"
        )
        if not result.is_success:
            raise DXVKExtractionError(result.error_output)
        return extract_dir

    def _install_dlls(self, extract_dir: pathlib.Path, prefix: WinePrefix):
        system32 = _system32(prefix)
        syswow64 = _syswow64(prefix)
        x64_dir = extract_dir / "x64"
        x32_dir = extract_dir / "x32"

        targets = []
        if x64_dir.is_dir():
            targets.append((x64_dir, system32))
        # 32-bit DLLs only go into a WoW64 prefix
        if x32_dir.is_dir() and syswow64.is_dir():
            targets.append((x32_dir, syswow64))

        for source_dir, dest_dir in targets:
            for dll in DLL_NAMES:
                source = source_dir / dll
                if source.exists():
                    self.file_system.copy_file(source, dest_dir / dll)
