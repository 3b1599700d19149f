"""
Prefix lifecycle management.

PrefixService is the only writer of prefix metadata. The on-disk prefixes
directory is the source of truth; the in-memory list is a cache filled by
load_prefixes() and kept current by the mutation methods below. Metadata
writes are whole-object and last-write-wins.
"""
import pathlib
import threading
import uuid
from dataclasses import replace
from typing import List, Optional

from PySide6.QtCore import QObject, Signal

from .config import ConfigStore
from .errors import (
    AppNotFoundError,
    PrefixInitializationError,
    PrefixNotFoundError,
    WineCellarError,
    attempt,
)
from .logs import LOG_MANAGER
from .models import InstalledApp, WineArch, WinePrefix, WineVersion, WindowsVersion, now
from .storage import FileSystemManager
from .wine import WineService

LEGACY_IMPORTED_NAME = "Imported Prefix"


def _is_uuid_string(name: str) -> bool:
    # Only the canonical hyphenated form; uuid.UUID also takes bare hex, braces and urns
    try:
        return str(uuid.UUID(name)) == name.lower()
    except ValueError:
        return False


def legacy_prefix_metadata(directory: pathlib.Path) -> WinePrefix:
    """
    Synthesize metadata for a prefix directory that has no ``prefix.json``.

    A directory named after a UUID keeps that id and gets a placeholder
    name; any other directory gets a fresh id and its own name, capitalized
    word by word ("steam" -> "Steam").
    """
    directory = pathlib.Path(directory)
    if _is_uuid_string(directory.name):
        prefix_id = directory.name
        name = LEGACY_IMPORTED_NAME
    else:
        prefix_id = str(uuid.uuid4())
        name = " ".join(word.capitalize() for word in directory.name.split(" "))

    return WinePrefix(
        id=prefix_id,
        name=name,
        path=directory,
        architecture=WineArch.WIN64,
        windows_version=WindowsVersion.WIN10,
        dxvk_enabled=True,
    )


def _sort_key(prefix: WinePrefix):
    # Used prefixes first (newest first), then never-used ones; ties by name
    if prefix.last_used is None:
        return (1, 0.0, prefix.name)
    return (0, -prefix.last_used.timestamp(), prefix.name)


def sort_prefixes(prefixes: List[WinePrefix]) -> List[WinePrefix]:
    return sorted(prefixes, key=_sort_key)


class PrefixService(QObject):
    """Creates, persists, mutates and removes Wine prefixes."""

    prefixesChanged = Signal(list)  # Emitted with the current list of WinePrefix

    def __init__(self, wine: WineService, file_system: FileSystemManager, config: ConfigStore):
        super().__init__()
        self.wine = wine
        self.file_system = file_system
        self.config = config
        self._lock = threading.RLock()
        self._prefixes: List[WinePrefix] = []

    @property
    def prefixes(self) -> List[WinePrefix]:
        with self._lock:
            return list(self._prefixes)

    def _publish(self, prefixes: List[WinePrefix]):
        self.prefixesChanged.emit(list(prefixes))

    # ============================================================================
    # Loading
    # ============================================================================

    def load_prefixes(self) -> List[WinePrefix]:
        """
        Rebuild the prefix list from the prefixes directory.

        Directories with unreadable metadata are skipped with a warning;
        directories without metadata are adopted through
        legacy_prefix_metadata().

        Returns:
            The prefixes sorted by last use, then name
        """
        loaded = []
        for directory in self.file_system.get_all_prefix_directories():
            metadata = directory / "prefix.json"
            if metadata.exists():
                try:
                    loaded.append(WinePrefix.from_dict(self.file_system.read_json(metadata)))
                except (OSError, ValueError, KeyError, TypeError) as e:
                    LOG_MANAGER.add_log("WARNING", f"Failed to load prefix at {directory}: {e}", "Prefix")
            else:
                prefix = legacy_prefix_metadata(directory)
                attempt(lambda: self._save(prefix), f"save metadata for legacy prefix {directory}", "Prefix")
                loaded.append(prefix)

        loaded = sort_prefixes(loaded)
        with self._lock:
            self._prefixes = loaded

        LOG_MANAGER.add_log("INFO", f"Loaded {len(loaded)} prefixes", "Prefix")
        self._publish(loaded)
        return list(loaded)

    # ============================================================================
    # CRUD operations
    # ============================================================================

    def create_prefix(
        self,
        name: str,
        architecture: WineArch = WineArch.WIN64,
        windows_version: WindowsVersion = WindowsVersion.WIN10,
        dxvk_enabled: bool = True,
        wine_version: Optional[WineVersion] = None,
    ) -> WinePrefix:
        """
        Create and initialize a new prefix.

        The directory is created, ``wineboot --init`` runs and the Windows
        version is applied. If any of these steps fails the directory is
        removed again and the prefix never appears in the list.

        Raises:
            PrefixInitializationError: Wine bootstrap or configuration failed
        """
        prefix_id = str(uuid.uuid4())
        LOG_MANAGER.add_log("INFO", f"Creating prefix '{name}' with id {prefix_id}", "Prefix")

        path = self.file_system.create_prefix_directory(prefix_id)

        default = self.wine.default_version
        version_string = wine_version.version if wine_version else (default.version if default else "")

        prefix = WinePrefix(
            id=prefix_id,
            name=name,
            path=path,
            wine_version=version_string,
            architecture=architecture,
            windows_version=windows_version,
            dxvk_enabled=dxvk_enabled,
        )

        try:
            self.wine.run_wineboot(prefix, wine_version=wine_version, init=True)
            self.wine.set_windows_version(windows_version, prefix, wine_version=wine_version)
        except (WineCellarError, OSError) as e:
            LOG_MANAGER.add_log("ERROR", f"Initialization of prefix '{name}' failed: {e}", "Prefix")
            attempt(lambda: self.file_system.delete(path), f"remove half-created prefix {path}", "Prefix")
            raise PrefixInitializationError(str(e)) from e

        self._save(prefix)

        with self._lock:
            self._prefixes.insert(0, prefix)
            current = list(self._prefixes)
        self._publish(current)

        LOG_MANAGER.add_log("INFO", f"Created prefix '{name}' successfully", "Prefix")
        return prefix

    def update_prefix(self, prefix: WinePrefix) -> WinePrefix:
        """Persist prefix and replace its entry in the list."""
        self._save(prefix)
        with self._lock:
            for i, existing in enumerate(self._prefixes):
                if existing.id == prefix.id:
                    self._prefixes[i] = prefix
                    break
            current = list(self._prefixes)
        self._publish(current)
        return prefix

    def delete_prefix(self, prefix: WinePrefix):
        """Stop the prefix's Wine processes, then remove its directory and every reference to it."""
        LOG_MANAGER.add_log("INFO", f"Deleting prefix '{prefix.name}'", "Prefix")

        attempt(lambda: self.wine.kill_prefix(prefix, self._wine_for(prefix)),
                f"stop Wine processes of '{prefix.name}'", "Prefix")

        self.file_system.delete(prefix.path)

        self.config.remove_recent_prefix(prefix.id)
        with self._lock:
            self._prefixes = [p for p in self._prefixes if p.id != prefix.id]
            current = list(self._prefixes)
        self._publish(current)

        LOG_MANAGER.add_log("INFO", f"Deleted prefix '{prefix.name}'", "Prefix")

    def duplicate_prefix(self, prefix: WinePrefix, new_name: str) -> WinePrefix:
        """Copy the whole prefix directory under a new id and name."""
        new_id = str(uuid.uuid4())
        new_path = self.file_system.prefix_directory(new_id)

        LOG_MANAGER.add_log("INFO", f"Duplicating prefix '{prefix.name}' to '{new_name}'", "Prefix")

        self.file_system.copy_directory(prefix.path, new_path)

        duplicate = replace(
            prefix,
            id=new_id,
            name=new_name,
            path=new_path,
            environment=dict(prefix.environment),
            installed_apps=list(prefix.installed_apps),
            created=now(),
            last_used=None,
        )
        self._save(duplicate)

        with self._lock:
            self._prefixes.insert(0, duplicate)
            current = list(self._prefixes)
        self._publish(current)
        return duplicate

    # ============================================================================
    # Lookup and usage
    # ============================================================================

    def get_prefix(self, prefix_id: str) -> Optional[WinePrefix]:
        with self._lock:
            return next((p for p in self._prefixes if p.id == prefix_id), None)

    def require_prefix(self, prefix_id: str) -> WinePrefix:
        prefix = self.get_prefix(prefix_id)
        if prefix is None:
            raise PrefixNotFoundError(prefix_id)
        return prefix

    def record_usage(self, prefix: WinePrefix) -> WinePrefix:
        """Stamp last use, persist it and move the prefix to the front of the recent list."""
        updated = self.update_prefix(replace(prefix, last_used=now()))
        self.config.add_recent_prefix(prefix.id)
        return updated

    # ============================================================================
    # Settings
    # ============================================================================

    def rename_prefix(self, prefix: WinePrefix, name: str) -> WinePrefix:
        return self.update_prefix(replace(prefix, name=name))

    def set_dxvk_enabled(self, prefix: WinePrefix, enabled: bool) -> WinePrefix:
        return self.update_prefix(replace(prefix, dxvk_enabled=enabled))

    def change_windows_version(self, prefix: WinePrefix, version: WindowsVersion) -> WinePrefix:
        """Apply version inside the prefix, then persist it."""
        self.wine.set_windows_version(version, prefix, self._wine_for(prefix))
        return self.update_prefix(replace(prefix, windows_version=version))

    # ============================================================================
    # App management
    # ============================================================================

    def add_app(self, app: InstalledApp, prefix: WinePrefix) -> WinePrefix:
        return self.update_prefix(replace(prefix, installed_apps=[*prefix.installed_apps, app]))

    def remove_app(self, app: InstalledApp, prefix: WinePrefix) -> WinePrefix:
        if prefix.find_app(app.id) is None:
            raise AppNotFoundError(app.name)
        apps = [a for a in prefix.installed_apps if a.id != app.id]
        return self.update_prefix(replace(prefix, installed_apps=apps))

    def update_app(self, app: InstalledApp, prefix: WinePrefix) -> WinePrefix:
        if prefix.find_app(app.id) is None:
            raise AppNotFoundError(app.name)
        apps = [app if a.id == app.id else a for a in prefix.installed_apps]
        return self.update_prefix(replace(prefix, installed_apps=apps))

    def launch_app(self, app: InstalledApp, prefix: WinePrefix) -> int:
        """
        Launch app inside prefix.

        The launch is recorded on the app and the prefix before Wine starts.

        Returns:
            The Wine process exit code

        Raises:
            PrefixNotFoundError: the prefix's Wine environment is missing
            AppNotFoundError: app does not belong to prefix
        """
        if not prefix.exists:
            raise PrefixNotFoundError(prefix.name)

        LOG_MANAGER.add_log("INFO", f"Launching app '{app.name}' in prefix '{prefix.name}'", "Wine")

        updated = self.update_app(app.with_launch_recorded(), prefix)
        updated = self.record_usage(updated)

        working_directory = None
        if app.working_directory:
            working_directory = updated.drive_c_path / app.working_directory

        return self.wine.run_executable(
            app.windows_path,
            app.arguments,
            updated,
            wine_version=self._wine_for(updated),
            environment=app.environment,
            working_directory=working_directory,
        )

    # ============================================================================
    # Helpers
    # ============================================================================

    def _save(self, prefix: WinePrefix):
        self.file_system.write_json(prefix.to_dict(), prefix.metadata_path)

    def _wine_for(self, prefix: WinePrefix) -> Optional[WineVersion]:
        """Installed toolchain matching the prefix's recorded version, None for the default."""
        if not prefix.wine_version:
            return None
        return next((v for v in self.wine.installed_versions if v.version == prefix.wine_version), None)
