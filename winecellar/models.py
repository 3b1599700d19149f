"""
Data models for WineCellar.

WinePrefix and InstalledApp are persisted as the ``prefix.json`` sidecar of
each prefix; WineVersion, SteamGame and SteamLibrary are transient scan
results rebuilt on demand.
"""
import os
import pathlib
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from .storage import FileSystemManager


def now() -> datetime:
    return datetime.now(timezone.utc)


def _encode_date(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _decode_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    # Naive timestamps are treated as UTC so they compare with aware ones
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ================================================================================
# Enumerations
# ================================================================================

class WineArch(Enum):
    WIN64 = "win64"  # Default for Steam
    WIN32 = "win32"  # Legacy 32-bit support

    @property
    def display_name(self) -> str:
        return _ARCH_DISPLAY[self]

    @property
    def wine_binary(self) -> str:
        return "wine64" if self is WineArch.WIN64 else "wine"


_ARCH_DISPLAY = {
    WineArch.WIN64: "64-bit (Recommended)",
    WineArch.WIN32: "32-bit (Legacy)",
}


class WindowsVersion(Enum):
    WIN11 = "win11"
    WIN10 = "win10"
    WIN81 = "win81"
    WIN8 = "win8"
    WIN7 = "win7"
    WINXP = "winxp"

    @property
    def display_name(self) -> str:
        return _WINDOWS_VERSIONS[self][0]

    @property
    def registry_version(self) -> str:
        """CurrentVersion value Wine reports for this Windows release."""
        return _WINDOWS_VERSIONS[self][1]


_WINDOWS_VERSIONS = {
    WindowsVersion.WIN11: ("Windows 11", "10.0"),
    WindowsVersion.WIN10: ("Windows 10", "10.0"),
    WindowsVersion.WIN81: ("Windows 8.1", "6.3"),
    WindowsVersion.WIN8: ("Windows 8", "6.2"),
    WindowsVersion.WIN7: ("Windows 7", "6.1"),
    WindowsVersion.WINXP: ("Windows XP", "5.1"),
}


class WineSource(Enum):
    GCENX = "gcenx"          # Homebrew tap gcenx/wine (recommended)
    WINEHQ = "wineHQ"        # Official WineHQ builds
    CROSSOVER = "crossover"  # CrossOver Wine (if detected)
    CUSTOM = "custom"        # User-provided binary

    @property
    def display_name(self) -> str:
        return _SOURCES[self][0]

    @property
    def description(self) -> str:
        return _SOURCES[self][1]


_SOURCES = {
    WineSource.GCENX: (
        "Gcenx (Homebrew)",
        "Recommended. Install via: brew tap gcenx/wine && brew install --cask wine-stable",
    ),
    WineSource.WINEHQ: ("WineHQ Official", "Official builds from WineHQ.org"),
    WineSource.CROSSOVER: ("CrossOver", "Commercial Wine distribution from CodeWeavers"),
    WineSource.CUSTOM: ("Custom", "User-provided Wine installation"),
}


# ================================================================================
# Installed applications
# ================================================================================

@dataclass(frozen=True)
class InstalledApp:
    """
    A Windows application installed inside a prefix.

    Instances are immutable; mutations produce copies via ``dataclasses.replace``
    so a prefix's app list is only ever changed through the PrefixService.
    """
    name: str
    executable_path: str                        # Relative to drive_c
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    working_directory: Optional[str] = None
    arguments: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    icon_path: Optional[str] = None             # Path to cached icon
    installed: datetime = field(default_factory=now)
    last_launched: Optional[datetime] = None
    launch_count: int = 0

    def __post_init__(self):
        if os.path.isabs(self.executable_path):
            raise ValueError(f"executable path must be relative to drive_c: {self.executable_path}")

    @property
    def windows_path(self) -> str:
        """Windows-style path (C:\\...)."""
        return "C:\\" + self.executable_path.replace("/", "\\")

    @property
    def file_name(self) -> str:
        return pathlib.PurePosixPath(self.executable_path.replace("\\", "/")).name

    @property
    def is_steam(self) -> bool:
        return self.file_name.lower() == "steam.exe"

    def with_launch_recorded(self) -> "InstalledApp":
        """Copy of this app with one more launch stamped at the current time."""
        return replace(self, last_launched=now(), launch_count=self.launch_count + 1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "executablePath": self.executable_path,
            "workingDirectory": self.working_directory,
            "arguments": list(self.arguments),
            "environment": dict(self.environment),
            "iconPath": self.icon_path,
            "installed": _encode_date(self.installed),
            "lastLaunched": _encode_date(self.last_launched),
            "launchCount": self.launch_count,
        }

    @staticmethod
    def from_dict(data: dict) -> "InstalledApp":
        return InstalledApp(
            id=data["id"],
            name=data["name"],
            executable_path=data["executablePath"],
            working_directory=data.get("workingDirectory"),
            arguments=list(data.get("arguments", [])),
            environment=dict(data.get("environment", {})),
            icon_path=data.get("iconPath"),
            installed=_decode_date(data.get("installed")) or now(),
            last_launched=_decode_date(data.get("lastLaunched")),
            launch_count=int(data.get("launchCount", 0)),
        )


# ================================================================================
# Wine prefixes
# ================================================================================

@dataclass(frozen=True)
class WinePrefix:
    """
    An isolated Windows environment.

    ``path`` is the prefix's own directory (holding ``prefix.json``); the
    actual WINEPREFIX is always ``path/wine``.
    """
    name: str
    path: pathlib.Path
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    wine_version: str = ""
    architecture: WineArch = WineArch.WIN64
    windows_version: WindowsVersion = WindowsVersion.WIN10
    dxvk_enabled: bool = True
    environment: Dict[str, str] = field(default_factory=dict)
    installed_apps: List[InstalledApp] = field(default_factory=list)
    created: datetime = field(default_factory=now)
    last_used: Optional[datetime] = None

    @property
    def wine_prefix_path(self) -> pathlib.Path:
        return pathlib.Path(self.path) / "wine"

    @property
    def metadata_path(self) -> pathlib.Path:
        return pathlib.Path(self.path) / "prefix.json"

    @property
    def drive_c_path(self) -> pathlib.Path:
        return self.wine_prefix_path / "drive_c"

    @property
    def program_files_path(self) -> pathlib.Path:
        if self.architecture is WineArch.WIN64:
            return self.drive_c_path / "Program Files"
        return self.drive_c_path / "Program Files (x86)"

    @property
    def exists(self) -> bool:
        return self.wine_prefix_path.exists()

    def disk_size(self) -> Optional[int]:
        """Bytes used by the Wine environment, None if it cannot be measured."""
        try:
            return FileSystemManager.directory_size(self.wine_prefix_path)
        except OSError:
            return None

    def find_app(self, app_id: str) -> Optional[InstalledApp]:
        return next((a for a in self.installed_apps if a.id == app_id), None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "path": str(self.path),
            "wineVersion": self.wine_version,
            "architecture": self.architecture.value,
            "windowsVersion": self.windows_version.value,
            "dxvkEnabled": self.dxvk_enabled,
            "environment": dict(self.environment),
            "installedApps": [a.to_dict() for a in self.installed_apps],
            "created": _encode_date(self.created),
            "lastUsed": _encode_date(self.last_used),
        }

    @staticmethod
    def from_dict(data: dict) -> "WinePrefix":
        return WinePrefix(
            id=data["id"],
            name=data["name"],
            path=pathlib.Path(data["path"]),
            wine_version=data.get("wineVersion", ""),
            architecture=WineArch(data.get("architecture", WineArch.WIN64.value)),
            windows_version=WindowsVersion(data.get("windowsVersion", WindowsVersion.WIN10.value)),
            dxvk_enabled=bool(data.get("dxvkEnabled", True)),
            environment=dict(data.get("environment", {})),
            installed_apps=[InstalledApp.from_dict(a) for a in data.get("installedApps", [])],
            created=_decode_date(data.get("created")) or now(),
            last_used=_decode_date(data.get("lastUsed")),
        )


# ================================================================================
# Wine toolchains
# ================================================================================

@dataclass(frozen=True)
class WineVersion:
    """An installed Wine toolchain rooted at ``path`` (binaries in ``path/bin``)."""
    version: str
    path: pathlib.Path
    source: WineSource
    is_default: bool = False
    id: str = ""

    def __post_init__(self):
        if not self.id:
            object.__setattr__(self, "id", f"wine-{self.version}")

    @property
    def wine64_path(self) -> pathlib.Path:
        return pathlib.Path(self.path) / "bin" / "wine64"

    @property
    def wine_path(self) -> pathlib.Path:
        return pathlib.Path(self.path) / "bin" / "wine"

    @property
    def wineserver_path(self) -> pathlib.Path:
        return pathlib.Path(self.path) / "bin" / "wineserver"

    @property
    def is_valid(self) -> bool:
        return any(
            p.is_file() and os.access(p, os.X_OK)
            for p in (self.wine64_path, self.wine_path)
        )

    def wine_binary(self, arch: WineArch) -> pathlib.Path:
        return self.wine64_path if arch is WineArch.WIN64 else self.wine_path


# ================================================================================
# Steam
# ================================================================================

@dataclass
class SteamGame:
    """A game found in a Steam library; ``id`` is the Steam app id."""
    id: int
    name: str
    install_path: Optional[str] = None
    executable: Optional[str] = None
    is_installed: bool = False
    last_played: Optional[datetime] = None
    play_time: float = 0  # seconds

    @property
    def store_url(self) -> str:
        return f"https://store.steampowered.com/app/{self.id}"

    @property
    def protondb_url(self) -> str:
        return f"https://www.protondb.com/app/{self.id}"

    @property
    def steam_launch_url(self) -> str:
        return f"steam://rungameid/{self.id}"

    @property
    def formatted_play_time(self) -> str:
        hours = int(self.play_time // 3600)
        minutes = int((self.play_time % 3600) // 60)
        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes} minutes"


@dataclass
class SteamLibrary:
    games: List[SteamGame] = field(default_factory=list)
    steam_path: Optional[str] = None
    last_updated: datetime = field(default_factory=now)

    @property
    def installed_games(self) -> List[SteamGame]:
        return [g for g in self.games if g.is_installed]

    @property
    def recently_played_games(self) -> List[SteamGame]:
        """Games played in the last 30 days, most recent first."""
        cutoff = now() - timedelta(days=30)
        recent = [g for g in self.games if g.last_played is not None and g.last_played > cutoff]
        return sorted(recent, key=lambda g: g.last_played, reverse=True)
