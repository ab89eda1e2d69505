"""Lifecycle management for external helper processes."""

import os
import shutil
import subprocess
import threading
from collections import deque
from collections.abc import Callable, Sequence
from pathlib import Path
from types import TracebackType
from typing import Literal

from .exceptions import BinaryNotFoundError, ProcessError
from .logging import get_logger

logger = get_logger(__name__)

OUTPUT_TAIL_LINES = 50


def resolve_binary(binary: str) -> str:
    """Resolve a helper binary name or path to an executable path.

    Raises:
        BinaryNotFoundError: If binary doesn't exist or isn't executable
    """
    if os.sep not in binary:
        found = shutil.which(binary)
        if found is None:
            raise BinaryNotFoundError(f"Binary '{binary}' not found in system PATH")
        return found

    binary_path = Path(binary)
    if not binary_path.exists():
        raise BinaryNotFoundError(f"Binary not found: {binary}")
    if not binary_path.is_file():
        raise BinaryNotFoundError(f"Binary path is not a file: {binary}")
    if not os.access(binary, os.X_OK):
        raise BinaryNotFoundError(f"Binary is not executable: {binary}")
    return binary


class HelperProcess:
    """Owns one helper child process, its stderr stream and its termination."""

    def __init__(
        self,
        argv: Sequence[str],
        on_output: Callable[[str], None] | None = None,
        stop_timeout: float = 5.0,
    ):
        """Initialize HelperProcess with an argument vector

        Args:
            argv: Program and arguments; never passed through a shell
            on_output: Called from the reader thread for every stderr/stdout line
            stop_timeout: Seconds to wait after SIGTERM before SIGKILL
        """
        if not argv:
            raise ValueError("argv cannot be empty")
        self.argv = list(argv)
        self.stop_timeout = stop_timeout
        self._on_output = on_output
        self._process: subprocess.Popen[str] | None = None
        self._reader: threading.Thread | None = None
        self._output: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        self._output_lock = threading.Lock()

    def start(self) -> None:
        """Start the helper process

        Raises:
            ProcessError: If process fails to start
        """
        if self.is_running():
            logger.debug("Process already running", pid=self.pid)
            return

        logger.info("Starting helper process", program=self.argv[0])
        try:
            self._process = subprocess.Popen(
                self.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            logger.error("Failed to start helper process", error=str(e))
            raise ProcessError(f"Failed to start helper process: {e}") from e

        self._reader = threading.Thread(
            target=self._read_output,
            args=(self._process,),
            name=f"helper-output-{self._process.pid}",
            daemon=True,
        )
        self._reader.start()
        logger.info("Helper process started", pid=self._process.pid)

    def _read_output(self, process: "subprocess.Popen[str]") -> None:
        stream = process.stdout
        if stream is None:
            return
        for raw_line in stream:
            line = raw_line.rstrip()
            if not line:
                continue
            with self._output_lock:
                self._output.append(line)
            if self._on_output is not None:
                try:
                    self._on_output(line)
                except Exception as e:
                    logger.error("Output callback failed", error=str(e))

    def stop(self) -> bool:
        """Stop the helper process; safe to call on a dead or never-started process

        Returns:
            True if the process is gone, False if it could not be reaped
        """
        process = self._process
        if process is None:
            return True

        if process.poll() is not None:
            logger.debug("Process already exited", returncode=process.returncode)
            self._join_reader()
            self._process = None
            return True

        logger.info("Stopping helper process", pid=process.pid)
        try:
            process.terminate()
            try:
                process.wait(timeout=self.stop_timeout)
                logger.info("Helper process terminated gracefully")
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Process did not terminate gracefully, force killing",
                    pid=process.pid,
                )
                process.kill()
                process.wait(timeout=self.stop_timeout)
            self._join_reader()
            self._process = None
            return True
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error("Error stopping process", pid=process.pid, error=str(e))
            return False

    def _join_reader(self) -> None:
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=1.0)

    def is_running(self) -> bool:
        """Check if process is currently running"""
        if self._process is None:
            return False

        return self._process.poll() is None

    @property
    def pid(self) -> int | None:
        """Get process ID if running"""
        if self.is_running() and self._process:
            return self._process.pid
        return None

    @property
    def returncode(self) -> int | None:
        if self._process is None:
            return None
        return self._process.poll()

    def output_tail(self, lines: int = 10) -> str:
        """Return the last captured output lines joined by newlines."""
        with self._output_lock:
            tail = list(self._output)[-lines:]
        return "\n".join(tail)

    def __enter__(self) -> "HelperProcess":
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        try:
            self.stop()
        except Exception as e:
            logger.error("Error during context exit", error=str(e))
        return False
