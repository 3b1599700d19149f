"""
Logging system for WineCellar.

Collects log entries from every service (Wine execution, prefix management,
downloads, Steam) into a bounded in-memory buffer, mirrors them to the
console and, once a log directory is attached, to a dated plain-text file.
"""
import sys
import pathlib
import threading
from datetime import datetime
from typing import List, Optional

from PySide6.QtCore import QObject, Signal


class LogManager(QObject):
    """
    Centralized logging system for capturing application output and errors.

    Collects logs from various sources including:
    - Prefix lifecycle events
    - Wine/winetricks process output and errors
    - Downloads and Steam orchestration
    """

    logUpdated = Signal(str)  # Emitted when new log entry is added

    def __init__(self, max_logs: int = 1000, echo: bool = True):
        super().__init__()
        self.logs: List[str] = []
        self.max_logs = max_logs  # Limit log entries to prevent memory issues
        self.echo = echo
        self.log_dir: Optional[pathlib.Path] = None
        self._lock = threading.Lock()

    def add_log(self, level: str, message: str, source: str = "General"):
        """
        Add a new log entry.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR)
            message: Log message
            source: Source of the log entry
        """
        now = datetime.now()
        log_entry = f"[{now.strftime('%H:%M:%S')}] [{level}] [{source}] {message}"

        with self._lock:
            self.logs.append(log_entry)
            # Keep only recent logs
            if len(self.logs) > self.max_logs:
                self.logs = self.logs[-self.max_logs:]
            self._write_to_file(now, level, source, message)

        self.logUpdated.emit(log_entry)

        if self.echo:
            if level in ["ERROR", "WARNING"]:
                print(log_entry, file=sys.stderr)
            else:
                print(log_entry)

    def debug(self, message: str, source: str = "General"):
        self.add_log("DEBUG", message, source)

    def info(self, message: str, source: str = "General"):
        self.add_log("INFO", message, source)

    def warning(self, message: str, source: str = "General"):
        self.add_log("WARNING", message, source)

    def error(self, message: str, source: str = "General"):
        self.add_log("ERROR", message, source)

    def get_all_logs(self) -> str:
        """Get all logs as a single string."""
        with self._lock:
            return "\n".join(self.logs)

    def clear_logs(self):
        """Clear all log entries."""
        with self._lock:
            self.logs.clear()
        self.logUpdated.emit("Logs cleared")

    # ------------------------------------------------------------------
    # File sink
    # ------------------------------------------------------------------

    @staticmethod
    def _log_file_for(log_dir: pathlib.Path, when: datetime) -> pathlib.Path:
        return log_dir / f"winecellar-{when.strftime('%Y-%m-%d')}.log"

    @property
    def log_file(self) -> Optional[pathlib.Path]:
        """Today's log file, or None while no log directory is attached."""
        log_dir = self.log_dir
        if log_dir is None:
            return None
        return self._log_file_for(log_dir, datetime.now())

    def attach_log_dir(self, log_dir: pathlib.Path) -> pathlib.Path:
        """
        Start mirroring entries to ``winecellar-<date>.log`` inside log_dir.

        The date is taken per entry, so a session running past midnight
        continues in the next day's file.

        Returns:
            Path of today's log file
        """
        log_dir = pathlib.Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = self._log_file_for(log_dir, datetime.now())
        log_file.touch(exist_ok=True)
        with self._lock:
            self.log_dir = log_dir
        return log_file

    def detach_log_dir(self):
        with self._lock:
            self.log_dir = None

    def log_files(self) -> List[pathlib.Path]:
        """All log files in the attached directory, newest first."""
        log_dir = self.log_dir
        if log_dir is None:
            return []
        files = [p for p in log_dir.iterdir() if p.suffix == ".log"]
        return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)

    def _write_to_file(self, when: datetime, level: str, source: str, message: str):
        if self.log_dir is None:
            return
        log_file = self._log_file_for(self.log_dir, when)
        timestamp = when.strftime("%Y-%m-%d %H:%M:%S.") + f"{when.microsecond // 1000:03d}"
        try:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(f"[{timestamp}] [{level}] [{source}] {message}\n")
        except OSError as e:
            print(f"[LogManager] cannot write {log_file}: {e}", file=sys.stderr)


# Global log manager instance
LOG_MANAGER = LogManager()
