"""
Download Manager.

Streams remote artifacts (Steam installer, winetricks, DXVK, Wine builds)
into the WineCellar cache. A download lands in a temporary file next to its
destination and replaces the destination only once the transfer completed.
There is a single attempt per call; retry policy belongs to the caller.
"""
import os
import pathlib
import tempfile
from dataclasses import dataclass
from typing import Callable, Optional, Union

import requests

from .errors import DownloadHTTPError
from .logs import LOG_MANAGER
from .storage import FileSystemManager

PathLike = Union[str, pathlib.Path]

# Known download URLs
STEAM_INSTALLER_URL = "https://cdn.akamai.steamstatic.com/client/installer/SteamSetup.exe"
WINETRICKS_URL = "https://raw.githubusercontent.com/Winetricks/winetricks/master/src/winetricks"


def dxvk_url(version: str) -> str:
    """GitHub release URL of a DXVK tarball."""
    return f"https://github.com/doitsujin/dxvk/releases/download/v{version}/dxvk-{version}.tar.gz"


def _format_bytes(count: int) -> str:
    if count < 1000:
        return f"{count} bytes"
    size = float(count)
    for unit in ("KB", "MB"):
        size /= 1000
        if size < 1000:
            return f"{size:.1f} {unit}"
    return f"{size / 1000:.1f} GB"


@dataclass
class DownloadProgress:
    bytes_downloaded: int
    total_bytes: int
    progress: float  # 0.0 to 1.0

    @property
    def formatted_progress(self) -> str:
        downloaded = _format_bytes(self.bytes_downloaded)
        if self.total_bytes > 0:
            return f"{downloaded} / {_format_bytes(self.total_bytes)}"
        return downloaded

    @property
    def percentage_string(self) -> str:
        return f"{self.progress * 100:.1f}%"


class DownloadService:
    """Fetches files over HTTP(S) with requests."""

    CHUNK = 8192  # Download chunk size in bytes
    USER_AGENT = "WineCellar/1.0"
    TIMEOUT = 30  # Seconds without data before the transfer fails

    def __init__(self, file_system: FileSystemManager, session: Optional[requests.Session] = None):
        self.file_system = file_system
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = self.USER_AGENT

    def download(
        self,
        url: str,
        destination: PathLike,
        progress: Optional[Callable[[DownloadProgress], None]] = None,
    ) -> pathlib.Path:
        """
        Download url to destination.

        Args:
            url: Source URL
            destination: Final file path; an existing file is replaced
            progress: Receives DownloadProgress after every chunk

        Returns:
            The destination path

        Raises:
            DownloadHTTPError: the server answered with a non-2xx status
            requests.RequestException: transport-level failure, unchanged
        """
        destination = pathlib.Path(destination)
        name = url.rsplit("/", 1)[-1]
        LOG_MANAGER.add_log("INFO", f"Starting download: {name}", "Download")

        with self.session.get(url, stream=True, timeout=self.TIMEOUT) as resp:
            if not 200 <= resp.status_code < 300:
                LOG_MANAGER.add_log("ERROR", f"Download of {name} failed: HTTP {resp.status_code}", "Download")
                raise DownloadHTTPError(resp.status_code, url)

            total = int(resp.headers.get("Content-Length", 0) or 0)
            destination.parent.mkdir(parents=True, exist_ok=True)

            # Create temporary file for download next to the destination
            fd, tmp = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".part", dir=destination.parent)
            try:
                done = 0
                with os.fdopen(fd, "wb") as f:
                    for chunk in resp.iter_content(self.CHUNK):
                        if chunk:
                            f.write(chunk)
                            done += len(chunk)
                            if progress:
                                fraction = min(done / total, 1.0) if total > 0 else 0.0
                                progress(DownloadProgress(done, total, fraction))
                os.replace(tmp, destination)
            except BaseException:
                pathlib.Path(tmp).unlink(missing_ok=True)
                raise

        LOG_MANAGER.add_log("INFO", f"Download completed: {destination.name}", "Download")
        return destination

    def download_to_cache(self, url: str, filename: Optional[str] = None) -> pathlib.Path:
        """Download into the shared downloads cache, named after the URL unless filename is given."""
        name = filename or url.rsplit("/", 1)[-1]
        return self.download(url, self.file_system.downloads_dir / name)
