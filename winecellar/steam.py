"""
Steam orchestration.

Installs the Windows Steam client into a dedicated prefix, finds existing
installs, launches Steam or single games and reads the installed games from
the library's appmanifest files.
"""
import pathlib
import re
import threading
import time
from typing import Callable, Dict, List, Optional

import requests
from PySide6.QtCore import QObject, Signal

from .downloads import STEAM_INSTALLER_URL, DownloadService
from .errors import DownloadHTTPError, GameNotFoundError, SteamInstallationError, SteamNotInstalledError
from .logs import LOG_MANAGER
from .models import InstalledApp, SteamGame, SteamLibrary, WineArch, WinePrefix, WindowsVersion
from .prefixes import PrefixService
from .wine import WineService
from .winetricks import WinetricksService

STEAM_EXE = "C:\\Program Files (x86)\\Steam\\steam.exe"
STEAM_APP_PATH = "Program Files (x86)/Steam/steam.exe"
STEAM_INSTALLER_NAME = "SteamSetup.exe"
STEAM_PREFIX_NAME = "Steam"

# Flat "key" "value" pairs; nested blocks are not understood
MANIFEST_PATTERN = re.compile(r'"(\w+)"\s+"([^"]+)"')


def parse_manifest_text(text: str) -> Optional[SteamGame]:
    """
    Build a SteamGame from the contents of an ``appmanifest_<id>.acf`` file.

    Returns:
        The game, or None if the manifest has no numeric appid or no name
    """
    data: Dict[str, str] = {}
    for key, value in MANIFEST_PATTERN.findall(text):
        data[key] = value

    try:
        app_id = int(data["appid"])
        name = data["name"]
    except (KeyError, ValueError):
        return None

    return SteamGame(id=app_id, name=name, install_path=data.get("installdir"), is_installed=True)


def parse_app_manifest(path: pathlib.Path) -> Optional[SteamGame]:
    try:
        text = pathlib.Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        LOG_MANAGER.add_log("WARNING", f"Cannot read manifest {path}: {e}", "Steam")
        return None
    return parse_manifest_text(text)


def _steam_dirs(prefix: WinePrefix) -> List[pathlib.Path]:
    return [
        prefix.drive_c_path / "Program Files (x86)" / "Steam",
        prefix.drive_c_path / "Program Files" / "Steam",
    ]


class SteamService(QObject):
    """
    Steam installation, detection, launching and library scanning.

    State (steam_prefix, steam_library, is_installing, install_progress) is
    replaced as a whole under the service lock.
    """

    installProgressChanged = Signal(str)
    libraryChanged = Signal(object)  # SteamLibrary

    def __init__(
        self,
        wine: WineService,
        prefixes: PrefixService,
        winetricks: WinetricksService,
        downloads: DownloadService,
    ):
        super().__init__()
        self.wine = wine
        self.prefixes = prefixes
        self.winetricks = winetricks
        self.downloads = downloads
        self.install_grace_period = 5.0  # seconds for the installer's background work
        self._lock = threading.RLock()
        self.steam_prefix: Optional[WinePrefix] = None
        self.steam_library: Optional[SteamLibrary] = None
        self.is_installing = False
        self.install_progress = ""

    # ============================================================================
    # Detection
    # ============================================================================

    def find_steam_prefix(self) -> Optional[WinePrefix]:
        """Find the prefix Steam lives in and remember it."""
        prefixes = self.prefixes.prefixes

        found = next((p for p in prefixes if self.is_steam_installed(p)), None)
        if found is None:
            found = next((p for p in prefixes if p.name.lower() == STEAM_PREFIX_NAME.lower()), None)

        if found is not None:
            with self._lock:
                self.steam_prefix = found
        return found

    @staticmethod
    def is_steam_installed(prefix: WinePrefix) -> bool:
        return any((d / "steam.exe").exists() for d in _steam_dirs(prefix))

    def _resolve_steam_prefix(self, provided: Optional[WinePrefix]) -> WinePrefix:
        if provided is not None:
            return provided
        with self._lock:
            cached = self.steam_prefix
        if cached is not None:
            return cached
        found = self.find_steam_prefix()
        if found is not None:
            return found
        raise SteamNotInstalledError()

    # ============================================================================
    # Installation
    # ============================================================================

    def _set_progress(self, message: str, on_progress: Optional[Callable[[str], None]]):
        with self._lock:
            self.install_progress = message
        self.installProgressChanged.emit(message)
        if on_progress:
            on_progress(message)

    def install_steam(self, on_progress: Optional[Callable[[str], None]] = None) -> WinePrefix:
        """
        Create a Steam prefix and install the Steam client into it.

        Args:
            on_progress: Receives status messages and installer output

        Returns:
            The new Steam prefix, with Steam registered as an installed app

        Raises:
            PrefixInitializationError: the prefix could not be created
            SteamInstallationError: the installer could not be downloaded
        """
        with self._lock:
            self.is_installing = True

        def progress(message: str):
            self._set_progress(message, on_progress)

        try:
            progress("Creating Steam-optimized prefix...")
            prefix = self.prefixes.create_prefix(
                STEAM_PREFIX_NAME,
                architecture=WineArch.WIN64,
                windows_version=WindowsVersion.WIN10,
                dxvk_enabled=True,
            )

            progress("Installing dependencies...")
            self.winetricks.install_steam_dependencies(prefix, on_output=progress)

            progress("Downloading Steam installer...")
            try:
                installer = self.downloads.download_to_cache(STEAM_INSTALLER_URL, STEAM_INSTALLER_NAME)
            except (DownloadHTTPError, requests.RequestException) as e:
                raise SteamInstallationError(str(e)) from e

            progress("Installing Steam...")
            exit_code = self.wine.run_executable(str(installer), ["/S"], prefix, on_output=progress)
            if exit_code != 0:
                LOG_MANAGER.add_log("WARNING", f"Steam installer exited with code {exit_code}", "Steam")

            # The installer keeps working in the background after it returns
            time.sleep(self.install_grace_period)

            progress("Configuring Steam...")
            prefix = self.prefixes.add_app(InstalledApp(name="Steam", executable_path=STEAM_APP_PATH), prefix)

            with self._lock:
                self.steam_prefix = prefix
            progress("Steam installation complete!")
        finally:
            with self._lock:
                self.is_installing = False

        LOG_MANAGER.add_log("INFO", f"Steam installed successfully in prefix '{prefix.name}'", "Steam")
        return prefix

    # ============================================================================
    # Launching
    # ============================================================================

    def launch_steam(self, prefix: Optional[WinePrefix] = None) -> int:
        target = self._resolve_steam_prefix(prefix)
        LOG_MANAGER.add_log("INFO", "Launching Steam", "Steam")
        return self.wine.run_executable(STEAM_EXE, ["-no-cef-sandbox"], target)

    def launch_steam_big_picture(self, prefix: Optional[WinePrefix] = None) -> int:
        target = self._resolve_steam_prefix(prefix)
        LOG_MANAGER.add_log("INFO", "Launching Steam in Big Picture mode", "Steam")
        return self.wine.run_executable(STEAM_EXE, ["-bigpicture", "-no-cef-sandbox"], target)

    def launch_game(self, app_id: int, prefix: Optional[WinePrefix] = None) -> int:
        target = self._resolve_steam_prefix(prefix)
        LOG_MANAGER.add_log("INFO", f"Launching Steam game: {app_id}", "Steam")
        return self.wine.run_executable(STEAM_EXE, ["-applaunch", str(app_id), "-no-cef-sandbox"], target)

    def kill_steam(self, prefix: Optional[WinePrefix] = None):
        """Stop every Wine process of the Steam prefix; a no-op when none is known."""
        with self._lock:
            target = prefix or self.steam_prefix
        if target is None:
            return
        self.wine.kill_prefix(target)
        LOG_MANAGER.add_log("INFO", "Killed Steam processes", "Steam")

    # ============================================================================
    # Library
    # ============================================================================

    def scan_library(self, prefix: Optional[WinePrefix] = None) -> SteamLibrary:
        """
        Read the installed games from the Steam library of prefix.

        Only the primary ``steamapps`` folder is scanned; the result replaces
        any previous scan.
        """
        target = self._resolve_steam_prefix(prefix)
        LOG_MANAGER.add_log("INFO", "Scanning Steam library", "Steam")

        steam_dir = _steam_dirs(target)[0]
        steamapps = steam_dir / "steamapps"

        games = []
        if steamapps.is_dir():
            for manifest in sorted(steamapps.glob("appmanifest_*.acf")):
                game = parse_app_manifest(manifest)
                if game is not None:
                    games.append(game)

        library = SteamLibrary(games=games, steam_path=str(steam_dir))
        with self._lock:
            self.steam_library = library
        self.libraryChanged.emit(library)

        LOG_MANAGER.add_log("INFO", f"Found {len(games)} Steam games", "Steam")
        return library

    def get_game(self, app_id: int) -> SteamGame:
        """Game app_id from the last library scan."""
        with self._lock:
            library = self.steam_library
        games = library.games if library else []
        for game in games:
            if game.id == app_id:
                return game
        raise GameNotFoundError(app_id)
