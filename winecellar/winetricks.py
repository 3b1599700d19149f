"""
Winetricks integration.

Resolves (and if necessary downloads) the winetricks helper script and runs
it against prefixes to install runtime dependencies. Batch installs are
best-effort: a failing verb is logged and the batch continues.
"""
import os
import pathlib
import threading
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from .downloads import WINETRICKS_URL, DownloadService
from .logs import LOG_MANAGER
from .models import WinePrefix, WineVersion
from .process import OutputSink, ProcessRunner
from .storage import FileSystemManager


class WinetricksCategory(Enum):
    FONTS = "Fonts"
    VCPP = "Visual C++ Runtime"
    DOTNET = ".NET Framework"
    DIRECTX = "DirectX"
    OTHER = "Other"


class WinetricksVerb(Enum):
    # Fonts
    COREFONTS = "corefonts"
    TAHOMA = "tahoma"
    ARIAL = "arial"
    TIMES = "times"
    COURIER = "courier"
    LUCIDA = "lucida"
    ALLFONTS = "allfonts"

    # Visual C++ runtimes
    VCRUN6 = "vcrun6"
    VCRUN2005 = "vcrun2005"
    VCRUN2008 = "vcrun2008"
    VCRUN2010 = "vcrun2010"
    VCRUN2012 = "vcrun2012"
    VCRUN2013 = "vcrun2013"
    VCRUN2015 = "vcrun2015"
    VCRUN2017 = "vcrun2017"
    VCRUN2019 = "vcrun2019"
    VCRUN2022 = "vcrun2022"

    # .NET
    DOTNET20 = "dotnet20"
    DOTNET40 = "dotnet40"
    DOTNET45 = "dotnet45"
    DOTNET48 = "dotnet48"
    DOTNETDESKTOP6 = "dotnetdesktop6"
    DOTNETDESKTOP7 = "dotnetdesktop7"

    # DirectX
    D3DX9 = "d3dx9"
    D3DX10 = "d3dx10"
    D3DX11_43 = "d3dx11_43"
    D3DCOMPILER_43 = "d3dcompiler_43"
    D3DCOMPILER_47 = "d3dcompiler_47"
    DXVK = "dxvk"

    # Everything else
    PHYSX = "physx"
    XACT = "xact"
    XACT_X64 = "xact_x64"
    XINPUT = "xinput"
    XLIVE = "xlive"
    MSXML3 = "msxml3"
    MSXML6 = "msxml6"
    GDIPLUS = "gdiplus"
    RICHED20 = "riched20"
    RICHED30 = "riched30"
    IE8 = "ie8"
    MFC42 = "mfc42"
    QUARTZ = "quartz"
    WMP9 = "wmp9"
    WMP11 = "wmp11"
    FLASH = "flash"
    MONO28 = "mono28"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def category(self) -> WinetricksCategory:
        v = self.value
        if self in _FONTS:
            return WinetricksCategory.FONTS
        if v.startswith("vcrun"):
            return WinetricksCategory.VCPP
        if v.startswith("dotnet"):
            return WinetricksCategory.DOTNET
        if v.startswith(("d3d", "dxvk")):
            return WinetricksCategory.DIRECTX
        return WinetricksCategory.OTHER


_FONTS = {
    WinetricksVerb.COREFONTS, WinetricksVerb.TAHOMA, WinetricksVerb.ARIAL, WinetricksVerb.TIMES,
    WinetricksVerb.COURIER, WinetricksVerb.LUCIDA, WinetricksVerb.ALLFONTS,
}

_DISPLAY_NAMES = {
    WinetricksVerb.COREFONTS: "Core Fonts",
    WinetricksVerb.TAHOMA: "Tahoma Font",
    WinetricksVerb.ARIAL: "Arial Font",
    WinetricksVerb.TIMES: "Times New Roman",
    WinetricksVerb.COURIER: "Courier Font",
    WinetricksVerb.LUCIDA: "Lucida Font",
    WinetricksVerb.ALLFONTS: "All Fonts",
    WinetricksVerb.VCRUN6: "VC++ 6",
    WinetricksVerb.VCRUN2005: "VC++ 2005",
    WinetricksVerb.VCRUN2008: "VC++ 2008",
    WinetricksVerb.VCRUN2010: "VC++ 2010",
    WinetricksVerb.VCRUN2012: "VC++ 2012",
    WinetricksVerb.VCRUN2013: "VC++ 2013",
    WinetricksVerb.VCRUN2015: "VC++ 2015",
    WinetricksVerb.VCRUN2017: "VC++ 2017",
    WinetricksVerb.VCRUN2019: "VC++ 2019",
    WinetricksVerb.VCRUN2022: "VC++ 2022",
    WinetricksVerb.DOTNET20: ".NET 2.0",
    WinetricksVerb.DOTNET40: ".NET 4.0",
    WinetricksVerb.DOTNET45: ".NET 4.5",
    WinetricksVerb.DOTNET48: ".NET 4.8",
    WinetricksVerb.DOTNETDESKTOP6: ".NET Desktop 6",
    WinetricksVerb.DOTNETDESKTOP7: ".NET Desktop 7",
    WinetricksVerb.D3DX9: "DirectX 9",
    WinetricksVerb.D3DX10: "DirectX 10",
    WinetricksVerb.D3DX11_43: "DirectX 11",
    WinetricksVerb.D3DCOMPILER_43: "D3D Compiler 43",
    WinetricksVerb.D3DCOMPILER_47: "D3D Compiler 47",
    WinetricksVerb.DXVK: "DXVK",
    WinetricksVerb.PHYSX: "PhysX",
    WinetricksVerb.XACT: "XACT",
    WinetricksVerb.XACT_X64: "XACT x64",
    WinetricksVerb.XINPUT: "XInput",
    WinetricksVerb.XLIVE: "Games for Windows Live",
    WinetricksVerb.MSXML3: "MSXML 3",
    WinetricksVerb.MSXML6: "MSXML 6",
    WinetricksVerb.GDIPLUS: "GDI+",
    WinetricksVerb.RICHED20: "Rich Edit 2.0",
    WinetricksVerb.RICHED30: "Rich Edit 3.0",
    WinetricksVerb.IE8: "Internet Explorer 8",
    WinetricksVerb.MFC42: "MFC 4.2",
    WinetricksVerb.QUARTZ: "Quartz (DirectShow)",
    WinetricksVerb.WMP9: "Windows Media Player 9",
    WinetricksVerb.WMP11: "Windows Media Player 11",
    WinetricksVerb.FLASH: "Flash Player",
    WinetricksVerb.MONO28: "Mono 2.8",
}

STEAM_DEPENDENCIES = [
    WinetricksVerb.COREFONTS,
    WinetricksVerb.VCRUN2022,
    WinetricksVerb.D3DCOMPILER_47,
]

GAME_DEPENDENCIES = [
    WinetricksVerb.COREFONTS,
    WinetricksVerb.VCRUN2022,
    WinetricksVerb.VCRUN2019,
    WinetricksVerb.D3DX9,
    WinetricksVerb.D3DCOMPILER_47,
    WinetricksVerb.PHYSX,
    WinetricksVerb.XACT,
]


def catalog() -> Dict[WinetricksCategory, List[WinetricksVerb]]:
    """All known verbs grouped by category, in declaration order."""
    groups: Dict[WinetricksCategory, List[WinetricksVerb]] = {c: [] for c in WinetricksCategory}
    for verb in WinetricksVerb:
        groups[verb.category].append(verb)
    return groups


Verb = Union[str, WinetricksVerb]


class WinetricksService:
    """Runs winetricks verbs inside prefixes."""

    def __init__(self, runner: ProcessRunner, downloads: DownloadService, file_system: FileSystemManager):
        self.runner = runner
        self.downloads = downloads
        self.file_system = file_system
        self._lock = threading.Lock()
        self._winetricks_path: Optional[pathlib.Path] = None

    def ensure_winetricks_available(self) -> pathlib.Path:
        """
        Locate a usable winetricks script, downloading it on first use.

        Lookup order: previously resolved path, cached copy in the
        winetricks directory, ``winetricks`` on PATH, fresh download.

        Returns:
            Path of an executable winetricks script
        """
        with self._lock:
            path = self._winetricks_path
            if path is not None and self.runner.is_executable(path):
                return path

            cached = self.file_system.winetricks_dir / "winetricks"
            if self.runner.is_executable(cached):
                self._winetricks_path = cached
                return cached

            system = self.runner.which("winetricks")
            if system is not None:
                LOG_MANAGER.add_log("INFO", f"Using system winetricks at {system}", "Wine")
                self._winetricks_path = system
                return system

            LOG_MANAGER.add_log("INFO", "Downloading winetricks...", "Wine")
            downloaded = self.downloads.download(WINETRICKS_URL, cached)
            os.chmod(downloaded, 0o755)
            LOG_MANAGER.add_log("INFO", "Winetricks downloaded successfully", "Wine")
            self._winetricks_path = downloaded
            return downloaded

    def install(
        self,
        verbs: Iterable[Verb],
        prefix: WinePrefix,
        wine_version: Optional[WineVersion] = None,
        on_output: Optional[OutputSink] = None,
    ) -> Dict[str, int]:
        """
        Run ``winetricks -q <verb>`` once per verb.

        Args:
            verbs: Verb names or WinetricksVerb members
            prefix: Target prefix
            wine_version: If given, winetricks uses its wine and wineserver
            on_output: Receives the streamed winetricks output

        Returns:
            dict: Exit code per verb name, in install order
        """
        names = [v.value if isinstance(v, WinetricksVerb) else str(v) for v in verbs]
        winetricks = self.ensure_winetricks_available()

        LOG_MANAGER.add_log("INFO", f"Installing winetricks verbs: {', '.join(names)} in '{prefix.name}'", "Wine")

        env = {
            "WINEPREFIX": str(prefix.wine_prefix_path),
            "WINEARCH": prefix.architecture.value,
            "WINEDEBUG": "-all",
        }
        if wine_version is not None:
            env["WINE"] = str(wine_version.wine_binary(prefix.architecture))
            env["WINESERVER"] = str(wine_version.wineserver_path)

        results = {}
        for name in names:
            LOG_MANAGER.add_log("INFO", f"Installing winetricks verb: {name}", "Wine")
            exit_code = self.runner.run_streaming(
                winetricks, ["-q", name], environment=env, on_output=on_output or (lambda _: None)
            )
            if exit_code != 0:
                LOG_MANAGER.add_log(
                    "WARNING", f"Winetricks verb '{name}' may have failed (exit code: {exit_code})", "Wine"
                )
            results[name] = exit_code

        LOG_MANAGER.add_log("INFO", "Winetricks installation completed", "Wine")
        return results

    def install_steam_dependencies(self, prefix: WinePrefix, wine_version: Optional[WineVersion] = None,
                                   on_output: Optional[OutputSink] = None) -> Dict[str, int]:
        return self.install(STEAM_DEPENDENCIES, prefix, wine_version, on_output)

    def install_game_dependencies(self, prefix: WinePrefix, wine_version: Optional[WineVersion] = None,
                                  on_output: Optional[OutputSink] = None) -> Dict[str, int]:
        return self.install(GAME_DEPENDENCIES, prefix, wine_version, on_output)

    def install_dotnet(self, prefix: WinePrefix, version: WinetricksVerb = WinetricksVerb.DOTNET48,
                       wine_version: Optional[WineVersion] = None,
                       on_output: Optional[OutputSink] = None) -> Dict[str, int]:
        return self.install([version], prefix, wine_version, on_output)

    def list_available_verbs(self) -> List[str]:
        """Every line of ``winetricks list-all``, blank lines dropped."""
        winetricks = self.ensure_winetricks_available()
        result = self.runner.run(winetricks, ["list-all"])
        return [line for line in result.output.splitlines() if line]
