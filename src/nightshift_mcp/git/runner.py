"""Synchronous runner for the git CLI."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .utils import sanitize_environment

logger = logging.getLogger(__name__)


class GitNotFoundError(RuntimeError):
    """Raised when the git executable cannot be located."""


class GitOperationError(RuntimeError):
    """Raised when a git command exits with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str, *, cwd: Path | None = None) -> None:
        self.args_used = tuple(args)
        self.returncode = returncode
        self.stderr = stderr
        self.cwd = cwd
        command = " ".join(self.args_used)
        diagnostic = stderr.strip() or "no diagnostic output"
        super().__init__(f"git command failed ({returncode}): {command} [{cwd}]: {diagnostic}")


@dataclass(slots=True)
class GitExecutionResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitRunner:
    """Execute git commands as blocking subprocess calls."""

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    def run(self, *args: str, cwd: Path, input: str | None = None) -> GitExecutionResult:
        cmd = [str(self._executable_path), *args]
        if not Path(cwd).is_dir():
            raise GitOperationError(("git", *args), 128, f"working directory {cwd} does not exist", cwd=Path(cwd))
        logger.debug("Running git", extra={"git_args": args, "cwd": str(cwd)})
        completed = subprocess.run(
            cmd,
            cwd=str(cwd),
            input=input,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            env=sanitize_environment(),
        )
        return GitExecutionResult(
            args=tuple(cmd),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

    def version(self) -> GitExecutionResult:
        return self.run("--version", cwd=Path.cwd())

    def check(self, *args: str, cwd: Path, input: str | None = None) -> GitExecutionResult:
        """Run a git command and raise ``GitOperationError`` when it fails."""

        result = self.run(*args, cwd=cwd, input=input)
        if not result.ok:
            raise GitOperationError(
                ("git", *args), result.returncode, result.stderr or result.stdout, cwd=Path(cwd)
            )
        return result


__all__ = ["GitExecutionResult", "GitNotFoundError", "GitOperationError", "GitRunner"]
