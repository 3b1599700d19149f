"""
Error taxonomy for WineCellar.

Low-level filesystem failures surface as plain ``OSError`` and transport
failures as ``requests`` exceptions; everything the services raise on their
own derives from WineCellarError so the interaction layer can show a single
human-readable message.
"""
from typing import Callable, Optional, TypeVar

from .logs import LOG_MANAGER

T = TypeVar("T")


class WineCellarError(Exception):
    """Base class for all errors raised by WineCellar services."""


# ================================================================================
# Process execution
# ================================================================================

class ProcessStartError(WineCellarError):
    """The executable could not be spawned (missing binary, permissions, ...)."""

    def __init__(self, executable: str, cause: OSError):
        super().__init__(f"Failed to start process {executable}: {cause}")
        self.executable = executable
        self.cause = cause


class ProcessTimeoutError(WineCellarError):
    def __init__(self, executable: str, timeout: float):
        super().__init__(f"Process {executable} did not finish within {timeout:g}s")
        self.executable = executable
        self.timeout = timeout


# ================================================================================
# Wine toolchain
# ================================================================================

class WineNotInstalledError(WineCellarError):
    def __init__(self):
        super().__init__(
            "No Wine installation found. Please install Wine via Homebrew: "
            "brew tap gcenx/wine && brew install --cask wine-stable"
        )


class WineBinaryNotFoundError(WineCellarError):
    def __init__(self, path: str):
        super().__init__(f"Wine binary not found at: {path}")
        self.path = path


class WinebootFailedError(WineCellarError):
    def __init__(self, exit_code: int):
        super().__init__(f"Wineboot failed with exit code: {exit_code}")
        self.exit_code = exit_code


# ================================================================================
# Prefixes and apps
# ================================================================================

class PrefixInitializationError(WineCellarError):
    def __init__(self, message: str):
        super().__init__(f"Failed to initialize prefix: {message}")


class PrefixNotFoundError(WineCellarError):
    def __init__(self, name: str):
        super().__init__(f"Prefix not found: {name}")
        self.name = name


class AppNotFoundError(WineCellarError):
    def __init__(self, name: str):
        super().__init__(f"Application not found: {name}")
        self.name = name


# ================================================================================
# Downloads and DXVK
# ================================================================================

class DownloadHTTPError(WineCellarError):
    def __init__(self, status_code: int, url: str = ""):
        super().__init__(f"HTTP error: {status_code}")
        self.status_code = status_code
        self.url = url


class DXVKError(WineCellarError):
    """Base class for DXVK install failures."""


class DXVKDownloadError(DXVKError):
    def __init__(self, message: str):
        super().__init__(f"Failed to download DXVK: {message}")


class DXVKExtractionError(DXVKError):
    def __init__(self, message: str):
        super().__init__(f"Failed to extract DXVK: {message}")


class DXVKInstallationError(DXVKError):
    def __init__(self, message: str):
        super().__init__(f"Failed to install DXVK: {message}")


# ================================================================================
# Steam
# ================================================================================

class SteamNotInstalledError(WineCellarError):
    def __init__(self):
        super().__init__("Steam is not installed. Use the Steam Setup wizard to install it.")


class SteamInstallationError(WineCellarError):
    def __init__(self, message: str):
        super().__init__(f"Steam installation failed: {message}")


class GameNotFoundError(WineCellarError):
    def __init__(self, app_id: int):
        super().__init__(f"Game not found: {app_id}")
        self.app_id = app_id


# ================================================================================
# Best-effort helper
# ================================================================================

def attempt(action: Callable[[], T], description: str, source: str = "General") -> Optional[T]:
    """
    Run a non-critical step and discard its failure.

    Used for cleanup paths (killing stray processes, removing temp files,
    rolling back half-created directories) whose outcome must not mask the
    primary operation.

    Returns:
        The action's result, or None if it raised
    """
    try:
        return action()
    except Exception as e:
        LOG_MANAGER.add_log("DEBUG", f"Ignored failure while trying to {description}: {e}", source)
        return None
