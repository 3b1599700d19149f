"""
Configuration management for WineCellar.

Settings live in ``<app root>/config.json`` as indented JSON. Missing keys
fall back to DEFAULT_CFG so files written by older versions keep loading.
"""
import json
import pathlib
import threading
from enum import Enum
from typing import List, Optional

from .logs import LOG_MANAGER
from .models import WineArch, WindowsVersion

MAX_RECENT_PREFIXES = 10

# Default configuration template
DEFAULT_CFG = {
    "default_wine_version": None,      # WineVersion id, None = first detected
    "default_architecture": "win64",   # WineArch for new prefixes
    "default_windows_version": "win10",
    "enable_dxvk_by_default": True,
    "wine_debug_level": "-all",        # WINEDEBUG value
    "dxvk_hud": [],                    # DXVK HUD elements, empty = HUD off
    "dxvk_async": True,                # DXVK_ASYNC=1
    "dxvk_log_level": "none",          # DXVK_LOG_LEVEL
    "recent_prefixes": [],             # Prefix ids, most recent first
    "favorite_apps": [],               # InstalledApp ids
}


class WineDebugLevel(Enum):
    NONE = "-all"
    ERRORS = "err"
    WARNINGS = "warn"
    TRACES = "trace"
    ALL = "+all"

    @property
    def display_name(self) -> str:
        return {
            WineDebugLevel.NONE: "None (Recommended)",
            WineDebugLevel.ERRORS: "Errors Only",
            WineDebugLevel.WARNINGS: "Warnings",
            WineDebugLevel.TRACES: "Trace (Verbose)",
            WineDebugLevel.ALL: "All (Debug)",
        }[self]


def load_cfg(config_file: pathlib.Path) -> dict:
    """
    Load application configuration from file.
    Creates default config if file doesn't exist.

    Args:
        config_file: Path of the JSON settings file

    Returns:
        dict: Configuration dictionary with defaults for missing keys
    """
    config_file = pathlib.Path(config_file)
    if not config_file.exists():
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text(json.dumps(DEFAULT_CFG, indent=2))

    data = json.loads(config_file.read_text())
    cfg = json.loads(json.dumps(DEFAULT_CFG))  # deep copy
    cfg.update(data)

    cfg["recent_prefixes"] = [str(p) for p in cfg.get("recent_prefixes", [])]
    cfg["favorite_apps"] = [str(a) for a in cfg.get("favorite_apps", [])]

    return cfg


def save_cfg(cfg: dict, config_file: pathlib.Path):
    """
    Save configuration to file.

    Args:
        cfg: Configuration dictionary to save
        config_file: Path of the JSON settings file
    """
    config_file = pathlib.Path(config_file)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(cfg, indent=2))


class ConfigStore:
    """
    Owns the loaded settings dictionary and persists every change.

    Typed accessors convert the raw JSON values into the enums the services
    use; unknown stored values fall back to the defaults.
    """

    def __init__(self, config_file: pathlib.Path):
        self.config_file = pathlib.Path(config_file)
        self._lock = threading.RLock()
        self.cfg = load_cfg(self.config_file)
        LOG_MANAGER.add_log("DEBUG", "Configuration loaded", "General")

    def save(self):
        with self._lock:
            save_cfg(self.cfg, self.config_file)
        LOG_MANAGER.add_log("DEBUG", "Configuration saved", "General")

    def _set(self, key: str, value):
        with self._lock:
            self.cfg[key] = value
            self.save()

    # ------------------------------------------------------------------
    # Typed settings
    # ------------------------------------------------------------------

    @property
    def default_wine_version(self) -> Optional[str]:
        return self.cfg.get("default_wine_version")

    @default_wine_version.setter
    def default_wine_version(self, value: Optional[str]):
        self._set("default_wine_version", value)

    @property
    def default_architecture(self) -> WineArch:
        try:
            return WineArch(self.cfg.get("default_architecture"))
        except ValueError:
            return WineArch.WIN64

    @default_architecture.setter
    def default_architecture(self, value: WineArch):
        self._set("default_architecture", value.value)

    @property
    def default_windows_version(self) -> WindowsVersion:
        try:
            return WindowsVersion(self.cfg.get("default_windows_version"))
        except ValueError:
            return WindowsVersion.WIN10

    @default_windows_version.setter
    def default_windows_version(self, value: WindowsVersion):
        self._set("default_windows_version", value.value)

    @property
    def enable_dxvk_by_default(self) -> bool:
        return bool(self.cfg.get("enable_dxvk_by_default", True))

    @enable_dxvk_by_default.setter
    def enable_dxvk_by_default(self, value: bool):
        self._set("enable_dxvk_by_default", bool(value))

    @property
    def wine_debug_level(self) -> WineDebugLevel:
        try:
            return WineDebugLevel(self.cfg.get("wine_debug_level"))
        except ValueError:
            return WineDebugLevel.NONE

    @wine_debug_level.setter
    def wine_debug_level(self, value: WineDebugLevel):
        self._set("wine_debug_level", value.value)

    # ------------------------------------------------------------------
    # Recent prefixes
    # ------------------------------------------------------------------

    @property
    def recent_prefixes(self) -> List[str]:
        with self._lock:
            return list(self.cfg["recent_prefixes"])

    def add_recent_prefix(self, prefix_id: str):
        """Move prefix_id to the front of the recent list, keeping at most 10 ids."""
        with self._lock:
            recent = [p for p in self.cfg["recent_prefixes"] if p != prefix_id]
            recent.insert(0, prefix_id)
            self.cfg["recent_prefixes"] = recent[:MAX_RECENT_PREFIXES]
            self.save()

    def remove_recent_prefix(self, prefix_id: str):
        with self._lock:
            self.cfg["recent_prefixes"] = [p for p in self.cfg["recent_prefixes"] if p != prefix_id]
            self.save()

    # ------------------------------------------------------------------
    # Favorite apps
    # ------------------------------------------------------------------

    @property
    def favorite_apps(self) -> List[str]:
        with self._lock:
            return list(self.cfg["favorite_apps"])

    def toggle_favorite(self, app_id: str):
        with self._lock:
            favorites = self.cfg["favorite_apps"]
            if app_id in favorites:
                favorites.remove(app_id)
            else:
                favorites.append(app_id)
            self.save()

    def is_favorite(self, app_id: str) -> bool:
        with self._lock:
            return app_id in self.cfg["favorite_apps"]

    def reset_to_defaults(self):
        with self._lock:
            self.cfg = json.loads(json.dumps(DEFAULT_CFG))
            self.save()
        LOG_MANAGER.add_log("INFO", "Configuration reset to defaults", "General")
