"""
Composition root.

Dependencies builds every service once, wires them together and owns the
single current error shown to the user.
"""
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import requests
from PySide6.QtCore import QObject, Signal

from .config import ConfigStore
from .downloads import DownloadService
from .dxvk import DXVKService
from .errors import (
    DXVKDownloadError,
    DownloadHTTPError,
    PrefixInitializationError,
    ProcessStartError,
    ProcessTimeoutError,
    SteamInstallationError,
    WineBinaryNotFoundError,
    WinebootFailedError,
    WineNotInstalledError,
)
from .logs import LOG_MANAGER
from .prefixes import PrefixService
from .process import ProcessRunner
from .steam import SteamService
from .storage import FileSystemManager
from .wine import WineService
from .winetricks import WinetricksService


class AppErrorKind(Enum):
    WINE_NOT_FOUND = "wineNotFound"
    PREFIX_CREATION_FAILED = "prefixCreationFailed"
    PROCESS_EXECUTION_FAILED = "processExecutionFailed"
    DOWNLOAD_FAILED = "downloadFailed"
    FILE_OPERATION_FAILED = "fileOperationFailed"
    STEAM_INSTALLATION_FAILED = "steamInstallationFailed"
    UNKNOWN = "unknown"


_KIND_TEMPLATES = {
    AppErrorKind.WINE_NOT_FOUND:
        "Wine not found. Please install Wine via Homebrew or download it from the Wine Manager.",
    AppErrorKind.PREFIX_CREATION_FAILED: "Failed to create Wine prefix: {}",
    AppErrorKind.PROCESS_EXECUTION_FAILED: "Process execution failed: {}",
    AppErrorKind.DOWNLOAD_FAILED: "Download failed: {}",
    AppErrorKind.FILE_OPERATION_FAILED: "File operation failed: {}",
    AppErrorKind.STEAM_INSTALLATION_FAILED: "Steam installation failed: {}",
    AppErrorKind.UNKNOWN: "An unexpected error occurred: {}",
}

# Checked in order; the first matching exception type decides the kind
_KIND_BY_TYPE = [
    ((WineNotInstalledError, WineBinaryNotFoundError), AppErrorKind.WINE_NOT_FOUND),
    ((PrefixInitializationError,), AppErrorKind.PREFIX_CREATION_FAILED),
    ((ProcessStartError, ProcessTimeoutError, WinebootFailedError), AppErrorKind.PROCESS_EXECUTION_FAILED),
    ((DownloadHTTPError, DXVKDownloadError, requests.RequestException), AppErrorKind.DOWNLOAD_FAILED),
    ((SteamInstallationError,), AppErrorKind.STEAM_INSTALLATION_FAILED),
    ((OSError,), AppErrorKind.FILE_OPERATION_FAILED),
]


@dataclass(frozen=True)
class AppError:
    """A user-facing error: a kind plus the underlying message."""
    kind: AppErrorKind
    message: str = ""

    @property
    def description(self) -> str:
        return _KIND_TEMPLATES[self.kind].format(self.message)

    @staticmethod
    def from_exception(error: BaseException) -> "AppError":
        for types, kind in _KIND_BY_TYPE:
            if isinstance(error, types):
                return AppError(kind, str(error))
        return AppError(AppErrorKind.UNKNOWN, str(error))


class Dependencies(QObject):
    """Holds every WineCellar service; construct one per process."""

    errorChanged = Signal(object)  # AppError or None

    def __init__(self, file_system: Optional[FileSystemManager] = None,
                 session: Optional[requests.Session] = None):
        super().__init__()
        self.file_system = file_system or FileSystemManager()
        self.config = ConfigStore(self.file_system.config_file)
        self.runner = ProcessRunner()
        self.downloads = DownloadService(self.file_system, session)

        self.wine = WineService(self.runner, self.file_system, self.config)
        self.winetricks = WinetricksService(self.runner, self.downloads, self.file_system)
        self.dxvk = DXVKService(self.runner, self.downloads, self.file_system, self.wine)
        self.prefixes = PrefixService(self.wine, self.file_system, self.config)
        self.steam = SteamService(self.wine, self.prefixes, self.winetricks, self.downloads)

        self._lock = threading.Lock()
        self._current_error: Optional[AppError] = None

    def startup(self):
        """Create the directory layout, start file logging, detect Wine and load prefixes."""
        self.file_system.ensure_app_directories_exist()
        LOG_MANAGER.attach_log_dir(self.file_system.logs_dir)
        LOG_MANAGER.add_log("INFO", "WineCellar starting", "General")
        self.wine.detect()
        self.prefixes.load_prefixes()

    # ============================================================================
    # Current error
    # ============================================================================

    @property
    def current_error(self) -> Optional[AppError]:
        with self._lock:
            return self._current_error

    def show_error(self, error):
        """Make error (an exception or an AppError) the current error."""
        app_error = error if isinstance(error, AppError) else AppError.from_exception(error)
        with self._lock:
            self._current_error = app_error
        LOG_MANAGER.add_log("ERROR", app_error.description, "General")
        self.errorChanged.emit(app_error)

    def clear_error(self):
        with self._lock:
            if self._current_error is None:
                return
            self._current_error = None
        self.errorChanged.emit(None)

    # ============================================================================
    # Background work
    # ============================================================================

    def run_in_background(self, fn: Callable, *args, on_success: Optional[Callable] = None) -> threading.Thread:
        """
        Run fn(*args) on a daemon thread.

        On success the current error is cleared and on_success receives the
        result; a failure becomes the current error.
        """
        def worker():
            try:
                result = fn(*args)
            except Exception as e:
                self.show_error(e)
                return
            self.clear_error()
            if on_success:
                on_success(result)

        thread = threading.Thread(target=worker, daemon=True)
        thread.start()
        return thread
