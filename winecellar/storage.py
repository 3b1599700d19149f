"""
On-disk layout and filesystem primitives for WineCellar.

Layout (rooted at the application-support directory)::

    <root>/prefixes/<prefix-id>/prefix.json   WinePrefix metadata
    <root>/prefixes/<prefix-id>/wine/         WINEPREFIX
    <root>/wine/<name>/                       managed Wine toolchains
    <root>/cache/downloads/                   downloaded artifacts
    <root>/cache/icons/                       cached app icons
    <root>/cache/dxvk-<version>/              extracted DXVK archives
    <root>/winetricks/winetricks              cached winetricks helper
    <root>/config.json                        app-wide settings

Filesystem errors propagate to the caller as OSError.
"""
import json
import os
import pathlib
import shutil
import sys
import tempfile
from typing import Callable, List, Optional, Union

from .logs import LOG_MANAGER

PathLike = Union[str, pathlib.Path]
ProgressSink = Callable[[float], None]

COPY_CHUNK = 1024 * 1024  # 1MB buffer

HOMEBREW_PATHS = [
    pathlib.Path("/usr/local"),                   # Intel Mac
    pathlib.Path("/opt/homebrew"),                # Apple Silicon
    pathlib.Path("/home/linuxbrew/.linuxbrew"),   # Linux
]


def default_app_root() -> pathlib.Path:
    """Application-support directory for the current platform."""
    override = os.environ.get("WINECELLAR_HOME")
    if override:
        return pathlib.Path(os.path.expanduser(override))
    home = pathlib.Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "WineCellar"
    data_home = os.environ.get("XDG_DATA_HOME") or str(home / ".local" / "share")
    return pathlib.Path(data_home) / "winecellar"


def default_logs_dir(app_root: pathlib.Path) -> pathlib.Path:
    if sys.platform == "darwin" and "WINECELLAR_HOME" not in os.environ:
        return pathlib.Path.home() / "Library" / "Logs" / "WineCellar"
    return app_root / "logs"


class FileSystemManager:
    """Computes WineCellar's directory layout and performs file operations on it."""

    def __init__(
        self,
        app_root: Optional[PathLike] = None,
        logs_dir: Optional[PathLike] = None,
        homebrew_paths: Optional[List[pathlib.Path]] = None,
    ):
        self.app_root = pathlib.Path(app_root) if app_root else default_app_root()
        self.logs_dir = pathlib.Path(logs_dir) if logs_dir else default_logs_dir(self.app_root)
        self.homebrew_paths = list(homebrew_paths) if homebrew_paths is not None else list(HOMEBREW_PATHS)

    # ============================================================================
    # Directory layout
    # ============================================================================

    @property
    def prefixes_dir(self) -> pathlib.Path:
        return self.app_root / "prefixes"

    @property
    def wine_dir(self) -> pathlib.Path:
        return self.app_root / "wine"

    @property
    def cache_dir(self) -> pathlib.Path:
        return self.app_root / "cache"

    @property
    def downloads_dir(self) -> pathlib.Path:
        return self.cache_dir / "downloads"

    @property
    def icons_dir(self) -> pathlib.Path:
        return self.cache_dir / "icons"

    @property
    def winetricks_dir(self) -> pathlib.Path:
        return self.app_root / "winetricks"

    @property
    def config_file(self) -> pathlib.Path:
        return self.app_root / "config.json"

    def ensure_app_directories_exist(self):
        """Create every application directory that is missing."""
        for directory in (
            self.app_root,
            self.prefixes_dir,
            self.wine_dir,
            self.cache_dir,
            self.downloads_dir,
            self.icons_dir,
            self.winetricks_dir,
            self.logs_dir,
        ):
            if not directory.exists():
                directory.mkdir(parents=True, exist_ok=True)
                LOG_MANAGER.add_log("DEBUG", f"Created directory: {directory}", "General")

    # ============================================================================
    # Prefix directories
    # ============================================================================

    def prefix_directory(self, prefix_id: str) -> pathlib.Path:
        return self.prefixes_dir / prefix_id

    def create_prefix_directory(self, prefix_id: str) -> pathlib.Path:
        """Create ``prefixes/<id>/wine`` and return ``prefixes/<id>``."""
        prefix_dir = self.prefix_directory(prefix_id)
        (prefix_dir / "wine").mkdir(parents=True, exist_ok=True)
        LOG_MANAGER.add_log("INFO", f"Created prefix directory: {prefix_dir}", "Prefix")
        return prefix_dir

    def delete_prefix_directory(self, prefix_id: str):
        prefix_dir = self.prefix_directory(prefix_id)
        if prefix_dir.exists():
            self.delete(prefix_dir)
            LOG_MANAGER.add_log("INFO", f"Deleted prefix directory: {prefix_dir}", "Prefix")

    def get_all_prefix_directories(self) -> List[pathlib.Path]:
        return self._subdirectories(self.prefixes_dir)

    # ============================================================================
    # Wine version directories
    # ============================================================================

    def get_all_wine_version_directories(self) -> List[pathlib.Path]:
        return self._subdirectories(self.wine_dir)

    def create_wine_version_directory(self, name: str) -> pathlib.Path:
        version_dir = self.wine_dir / name
        version_dir.mkdir(parents=True, exist_ok=True)
        return version_dir

    def _subdirectories(self, parent: pathlib.Path) -> List[pathlib.Path]:
        if not parent.exists():
            return []
        return [p for p in self.list_directory(parent) if p.is_dir()]

    # ============================================================================
    # JSON documents
    # ============================================================================

    @staticmethod
    def read_json(path: PathLike):
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    @staticmethod
    def write_json(value, path: PathLike):
        """Write pretty-printed JSON with sorted keys, replacing path atomically."""
        path = pathlib.Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(tmp, path)
        except BaseException:
            pathlib.Path(tmp).unlink(missing_ok=True)
            raise

    # ============================================================================
    # Copy operations
    # ============================================================================

    def copy_file(self, source: PathLike, destination: PathLike, progress: Optional[ProgressSink] = None):
        """
        Copy a single file, replacing any existing destination.

        Args:
            source: File to copy
            destination: Target path; parent directories are created
            progress: Receives the copied fraction, ending with 1.0
        """
        source, destination = pathlib.Path(source), pathlib.Path(destination)
        total = source.stat().st_size

        destination.parent.mkdir(parents=True, exist_ok=True)
        if destination.exists() or destination.is_symlink():
            self.delete(destination)

        written = 0
        with open(source, "rb") as src, open(destination, "wb") as dst:
            while True:
                chunk = src.read(COPY_CHUNK)
                if not chunk:
                    break
                dst.write(chunk)
                written += len(chunk)
                if progress and total > 0:
                    progress(min(written / total, 1.0))
        shutil.copymode(source, destination)

        if progress:
            progress(1.0)

    def copy_directory(self, source: PathLike, destination: PathLike, progress: Optional[ProgressSink] = None):
        """
        Recursively copy a directory tree, replacing any existing destination.

        Progress is reported as the fraction of file bytes copied so far.
        Symlinks are recreated as links rather than followed.
        """
        source, destination = pathlib.Path(source), pathlib.Path(destination)
        if not source.is_dir():
            raise NotADirectoryError(f"Source is not a directory: {source}")

        if destination.exists():
            self.delete(destination)
        destination.mkdir(parents=True)

        # Collect items first so progress can be reported against the total size
        items = []
        total = 0
        for root, dirs, files in os.walk(source, onerror=_raise):
            root_path = pathlib.Path(root)
            for d in sorted(dirs):
                items.append((root_path / d, True))
            for f in sorted(files):
                item = root_path / f
                items.append((item, False))
                if not item.is_symlink():
                    total += item.stat().st_size

        copied = 0
        for item, is_dir in items:
            target = destination / item.relative_to(source)
            if item.is_symlink():
                target.parent.mkdir(parents=True, exist_ok=True)
                os.symlink(os.readlink(item), target)
            elif is_dir:
                target.mkdir(parents=True, exist_ok=True)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(item, target)
                copied += item.stat().st_size
                if progress and total > 0:
                    progress(min(copied / total, 1.0))

        if progress:
            progress(1.0)

    # ============================================================================
    # Queries and primitives
    # ============================================================================

    @staticmethod
    def directory_size(path: PathLike) -> int:
        """Sum of the sizes of all regular files below path (directories excluded)."""
        total = 0
        for root, _dirs, files in os.walk(path, onerror=_raise):
            for f in files:
                total += os.lstat(os.path.join(root, f)).st_size
        return total

    @staticmethod
    def exists(path: PathLike) -> bool:
        return pathlib.Path(path).exists()

    @staticmethod
    def is_directory(path: PathLike) -> bool:
        return pathlib.Path(path).is_dir()

    @staticmethod
    def list_directory(path: PathLike) -> List[pathlib.Path]:
        """Directory entries without hidden files, sorted by name."""
        return sorted(p for p in pathlib.Path(path).iterdir() if not p.name.startswith("."))

    @staticmethod
    def create_directory(path: PathLike):
        pathlib.Path(path).mkdir(parents=True, exist_ok=True)

    @staticmethod
    def delete(path: PathLike):
        """Remove a file or directory tree; a missing path is not an error."""
        path = pathlib.Path(path)
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()

    def move(self, source: PathLike, destination: PathLike):
        destination = pathlib.Path(destination)
        if destination.exists() or destination.is_symlink():
            self.delete(destination)
        shutil.move(str(source), str(destination))

    # ============================================================================
    # Homebrew detection
    # ============================================================================

    def find_homebrew_prefix(self) -> Optional[pathlib.Path]:
        for path in self.homebrew_paths:
            brew = path / "bin" / "brew"
            if brew.is_file() and os.access(brew, os.X_OK):
                return path
        return None

    def find_homebrew_caskroom(self) -> Optional[pathlib.Path]:
        prefix = self.find_homebrew_prefix()
        if prefix is None:
            return None
        caskroom = prefix / "Caskroom"
        return caskroom if caskroom.exists() else None


def _raise(error: OSError):
    raise error
