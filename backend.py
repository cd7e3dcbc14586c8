"""
Backend abstraction for file and command operations on the user's project.
"""

import logging
import os
import signal
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Tuple

logger = logging.getLogger(__name__)


def kill_process_group(proc: Any, sig: int = signal.SIGTERM) -> None:
    """Signal a process and its entire process group.

    Works for both ``subprocess.Popen`` and asyncio subprocesses; the
    process must have been started in its own session.
    """
    try:
        os.killpg(os.getpgid(proc.pid), sig)
    except (ProcessLookupError, OSError):
        pass
    if sig == signal.SIGKILL:
        try:
            proc.kill()
        except (ProcessLookupError, OSError):
            pass


class Backend(ABC):
    """Abstract backend for file system and command operations."""

    @property
    @abstractmethod
    def working_directory(self) -> str:
        """Return the working directory path."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read a text file."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write a text file, creating parent directories."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check whether a path exists."""

    @abstractmethod
    def run_command(self, command: str, cwd: str, timeout: int = 30) -> Tuple[str, str, int]:
        """Run a shell command. Returns (stdout, stderr, returncode)."""

    def resolve_path(self, path: str) -> str:
        """Resolve a path relative to the working directory."""
        if os.path.isabs(path):
            return path
        return os.path.normpath(os.path.join(self.working_directory, path))


class LocalBackend(Backend):
    """Backend that operates on the local filesystem."""

    def __init__(self, working_directory: str = "."):
        self._working_directory = os.path.abspath(working_directory)

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def _ensure_under_working(self, resolved: str) -> None:
        real = os.path.abspath(resolved)
        wd = os.path.abspath(self._working_directory)
        if real != wd and not real.startswith(wd + os.sep):
            raise ValueError(f"Path escapes working directory: {resolved!r}")

    def read_file(self, path: str) -> str:
        full = self.resolve_path(path)
        self._ensure_under_working(full)
        with open(full, "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        full = self.resolve_path(path)
        self._ensure_under_working(full)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)

    def file_exists(self, path: str) -> bool:
        full = self.resolve_path(path)
        self._ensure_under_working(full)
        return os.path.exists(full)

    def run_command(self, command: str, cwd: str, timeout: int = 30) -> Tuple[str, str, int]:
        full_cwd = self.resolve_path(cwd) if cwd != "." else self._working_directory
        proc = subprocess.Popen(
            command, shell=True, cwd=full_cwd,
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
            start_new_session=True,  # own process group for clean kill
        )
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            kill_process_group(proc, signal.SIGKILL)
            stdout, stderr = proc.communicate(timeout=5)
            return stdout or "", f"Command timed out after {timeout}s\n{stderr or ''}", -1
        return stdout or "", stderr or "", proc.returncode
