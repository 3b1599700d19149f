"""
Process execution for WineCellar.

Every external program (Wine binaries, winetricks, tar, installers) is started
through ProcessRunner. A runner holds no per-call state, so independent calls
may run concurrently from different worker threads.
"""
import codecs
import os
import pathlib
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Union

from .errors import ProcessStartError, ProcessTimeoutError
from .logs import LOG_MANAGER
from .models import WineArch

PathLike = Union[str, pathlib.Path]
OutputSink = Callable[[str], None]

CHUNK = 4096  # Streaming read size in bytes


@dataclass
class ProcessResult:
    """Outcome of a finished process. A nonzero exit code is data, not an error."""
    exit_code: int
    output: str
    error_output: str
    duration: float

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0

    @property
    def combined_output(self) -> str:
        if not self.error_output:
            return self.output
        if not self.output:
            return self.error_output
        return self.output + "\n" + self.error_output


class ProcessRunner:
    """Runs executables with an environment overlay merged over os.environ."""

    SHELL = "/bin/bash"

    @staticmethod
    def _merged_env(environment: Optional[Dict[str, str]]) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(environment or {})
        return env

    def _spawn(self, executable: PathLike, arguments: Sequence[str], environment, working_directory,
               stderr) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                [str(executable), *arguments],
                env=self._merged_env(environment),
                cwd=str(working_directory) if working_directory else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=stderr,
            )
        except OSError as e:
            LOG_MANAGER.add_log("ERROR", f"Failed to start process: {e}", "Process")
            raise ProcessStartError(str(executable), e) from e

    # ============================================================================
    # Basic execution
    # ============================================================================

    def run(
        self,
        executable: PathLike,
        arguments: Sequence[str] = (),
        environment: Optional[Dict[str, str]] = None,
        working_directory: Optional[PathLike] = None,
        timeout: Optional[float] = None,
    ) -> ProcessResult:
        """
        Run a command and wait for completion.

        Args:
            executable: Path of the program to start
            arguments: Command-line arguments
            environment: Variables layered over the current environment
            working_directory: Directory to start the process in
            timeout: Optional deadline in seconds; None waits indefinitely

        Returns:
            ProcessResult with trimmed stdout/stderr

        Raises:
            ProcessStartError: the process could not be started
            ProcessTimeoutError: the deadline passed (the process is killed)
        """
        start = time.monotonic()
        LOG_MANAGER.add_log("DEBUG", f"Running: {executable} {' '.join(arguments)}", "Process")

        process = self._spawn(executable, arguments, environment, working_directory, subprocess.PIPE)
        try:
            out, err = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            LOG_MANAGER.add_log("WARNING", f"Process {executable} killed after {timeout}s", "Process")
            raise ProcessTimeoutError(str(executable), timeout)

        result = ProcessResult(
            exit_code=process.returncode,
            output=out.decode("utf-8", errors="replace").strip(),
            error_output=err.decode("utf-8", errors="replace").strip(),
            duration=time.monotonic() - start,
        )
        LOG_MANAGER.add_log(
            "DEBUG", f"Process completed: exit={result.exit_code}, duration={result.duration:.2f}s", "Process"
        )
        return result

    def run_shell(self, command: str, environment: Optional[Dict[str, str]] = None) -> ProcessResult:
        """Run a shell command string."""
        return self.run(self.SHELL, ["-c", command], environment=environment)

    # ============================================================================
    # Streaming execution
    # ============================================================================

    def run_streaming(
        self,
        executable: PathLike,
        arguments: Sequence[str] = (),
        environment: Optional[Dict[str, str]] = None,
        working_directory: Optional[PathLike] = None,
        on_output: Optional[OutputSink] = None,
    ) -> int:
        """
        Run a command, handing merged stdout/stderr to on_output as it arrives.

        Returns:
            The process exit code
        """
        LOG_MANAGER.add_log("DEBUG", f"Running (streaming): {executable} {' '.join(arguments)}", "Process")

        process = self._spawn(executable, arguments, environment, working_directory, subprocess.STDOUT)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            with process.stdout:
                while True:
                    data = process.stdout.read1(CHUNK)
                    if not data:
                        break
                    text = decoder.decode(data)
                    if text and on_output:
                        on_output(text)
                tail = decoder.decode(b"", final=True)
                if tail and on_output:
                    on_output(tail)
        finally:
            # Reap the child even when on_output raises
            exit_code = process.wait()

        LOG_MANAGER.add_log("DEBUG", f"Streaming process completed: exit={exit_code}", "Process")
        return exit_code

    # ============================================================================
    # Wine-specific execution
    # ============================================================================

    def run_wine(
        self,
        wine_binary: PathLike,
        executable: str,
        arguments: Sequence[str] = (),
        prefix_path: PathLike = "",
        arch: WineArch = WineArch.WIN64,
        environment: Optional[Dict[str, str]] = None,
        on_output: Optional[OutputSink] = None,
        working_directory: Optional[PathLike] = None,
    ) -> int:
        """
        Run ``wine_binary executable arguments...`` against a WINEPREFIX.

        WINEPREFIX and WINEARCH always come from prefix_path/arch; WINEDEBUG
        defaults to ``-all`` unless the overlay sets it.
        """
        env = dict(environment or {})
        env["WINEPREFIX"] = str(prefix_path)
        env["WINEARCH"] = arch.value
        env.setdefault("WINEDEBUG", "-all")

        args = [executable, *arguments]
        LOG_MANAGER.add_log(
            "INFO", f"Running Wine: {executable} in prefix {pathlib.Path(prefix_path).name}", "Wine"
        )

        if on_output is not None:
            return self.run_streaming(wine_binary, args, env, working_directory, on_output)
        return self.run(wine_binary, args, env, working_directory).exit_code

    # ============================================================================
    # Utility methods
    # ============================================================================

    @staticmethod
    def is_executable(path: PathLike) -> bool:
        p = pathlib.Path(path)
        return p.is_file() and os.access(p, os.X_OK)

    def get_version(self, executable: PathLike) -> Optional[str]:
        """First line of ``executable --version``, or None if it fails."""
        try:
            result = self.run(executable, ["--version"])
        except ProcessStartError:
            return None
        if not result.is_success:
            return None
        return result.output.splitlines()[0] if result.output else ""

    @staticmethod
    def which(name: str) -> Optional[pathlib.Path]:
        """Find an executable on PATH."""
        found = shutil.which(name)
        return pathlib.Path(found) if found else None
