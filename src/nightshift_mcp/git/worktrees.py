"""Per-task git worktrees rooted at a shared primary repository."""

from __future__ import annotations

import logging
import re
import shutil
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from .runner import GitOperationError, GitRunner

if TYPE_CHECKING:
    from ..storage import ChromaStore

logger = logging.getLogger(__name__)

_TASK_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class WorktreeConflict(RuntimeError):
    """Raised when a worktree for the task already exists or is being created."""

    def __init__(self, task_id: str, path: Path, reason: str) -> None:
        self.task_id = task_id
        self.path = path
        super().__init__(f"Worktree for task '{task_id}' at {path}: {reason}")


@dataclass(slots=True, frozen=True)
class Worktree:
    task_id: str
    path: Path
    branch_name: str
    base_ref: str
    created_at: datetime


def validate_task_id(task_id: str) -> str:
    """Return ``task_id`` if it is usable as both a directory and a ref name."""

    if (
        not isinstance(task_id, str)
        or not _TASK_ID_PATTERN.match(task_id)
        or ".." in task_id
        or task_id.endswith(".lock")
    ):
        raise ValueError(
            f"Invalid task id {task_id!r}: use letters, digits, '.', '_' or '-' and start with a letter or digit"
        )
    return task_id


class WorktreeStore:
    """Create and remove one isolated worktree per task.

    Each worktree lives at ``<worktree_root>/<task_id>`` and is checked out on
    its own branch ``<branch_prefix><task_id>``, forked from ``base_ref`` (the
    primary repository's current branch when not given).
    """

    def __init__(
        self,
        repo_path: Path,
        worktree_root: Path,
        *,
        runner: GitRunner,
        branch_prefix: str = "ns/task/",
        base_ref: str | None = None,
        events: ChromaStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo_path = Path(repo_path).expanduser().resolve()
        self._root = Path(worktree_root).expanduser().resolve()
        self._runner = runner
        self._branch_prefix = branch_prefix
        self._base_ref = base_ref
        self._events = events
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._git_lock = threading.Lock()
        self._pending: set[str] = set()
        self._active: dict[str, Worktree] = {}

    @property
    def repo_path(self) -> Path:
        return self._repo_path

    @property
    def root(self) -> Path:
        return self._root

    def branch_name(self, task_id: str) -> str:
        return f"{self._branch_prefix}{validate_task_id(task_id)}"

    def worktree_path(self, task_id: str) -> Path:
        return self._root / validate_task_id(task_id)

    def create_worktree(self, task_id: str) -> Path:
        """Create the worktree for ``task_id`` and return its path."""

        path = self.worktree_path(task_id)
        branch = self.branch_name(task_id)

        with self._lock:
            if task_id in self._pending:
                raise WorktreeConflict(task_id, path, "creation already in progress")
            if task_id in self._active:
                raise WorktreeConflict(task_id, path, "worktree already exists")
            self._pending.add(task_id)

        try:
            with self._git_lock:
                if path.exists():
                    raise WorktreeConflict(task_id, path, "directory already exists")
                if self._branch_exists(branch):
                    raise WorktreeConflict(task_id, path, f"branch '{branch}' already exists")

                base_ref = self._base_ref or self._default_branch()
                self._root.mkdir(parents=True, exist_ok=True)
                try:
                    self._runner.check(
                        "worktree", "add", "-b", branch, str(path), base_ref, cwd=self._repo_path
                    )
                except GitOperationError:
                    self._rollback_create(path, branch)
                    raise

            worktree = Worktree(
                task_id=task_id,
                path=path,
                branch_name=branch,
                base_ref=base_ref,
                created_at=self._clock(),
            )
            with self._lock:
                self._active[task_id] = worktree
        finally:
            with self._lock:
                self._pending.discard(task_id)

        logger.info(
            "Created worktree",
            extra={"task_id": task_id, "path": str(path), "branch": branch, "base_ref": base_ref},
        )
        if self._events is not None:
            self._events.record_worktree(worktree, status="active")
        return path

    def remove_worktree(self, task_id: str) -> None:
        """Remove the task worktree, its admin record and its branch.

        Removing a worktree that does not exist is a no-op.
        """

        path = self.worktree_path(task_id)
        branch = self.branch_name(task_id)

        with self._git_lock:
            registered = path in self._registered_paths()
            removed = False
            if registered:
                result = self._runner.run("worktree", "remove", "--force", str(path), cwd=self._repo_path)
                if not result.ok:
                    logger.warning(
                        "git worktree remove failed, deleting directory",
                        extra={"task_id": task_id, "path": str(path), "stderr": result.stderr.strip()},
                    )
                removed = True
            if path.exists():
                shutil.rmtree(path)
                removed = True
            self._runner.check("worktree", "prune", cwd=self._repo_path)
            if self._branch_exists(branch):
                self._runner.check("branch", "-D", branch, cwd=self._repo_path)
                removed = True

        with self._lock:
            worktree = self._active.pop(task_id, None)

        if not removed:
            logger.debug("Worktree already removed", extra={"task_id": task_id})
            return

        logger.info("Removed worktree", extra={"task_id": task_id, "path": str(path)})
        if self._events is not None:
            self._events.record_worktree(
                worktree
                or Worktree(
                    task_id=task_id,
                    path=path,
                    branch_name=branch,
                    base_ref=self._base_ref or "",
                    created_at=self._clock(),
                ),
                status="removed",
            )

    def get_worktree(self, task_id: str) -> Worktree | None:
        """Return the worktree for ``task_id`` if it is active."""

        with self._lock:
            worktree = self._active.get(task_id)
        if worktree is not None:
            if worktree.path.exists():
                return worktree
            with self._lock:
                self._active.pop(task_id, None)
            return None

        path = self.worktree_path(task_id)
        if path.exists() and path in self._registered_paths():
            return self._adopt(task_id, path)
        return None

    def list_worktrees(self) -> list[Worktree]:
        """Return every active task worktree below the worktree root."""

        worktrees: list[Worktree] = []
        for path in sorted(self._registered_paths()):
            if path.parent != self._root or not path.exists():
                continue
            worktree = self.get_worktree(path.name)
            if worktree is not None:
                worktrees.append(worktree)
        return worktrees

    def _adopt(self, task_id: str, path: Path) -> Worktree:
        # Worktree created by an earlier process: rebuild the record from disk.
        created_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        worktree = Worktree(
            task_id=task_id,
            path=path,
            branch_name=self.branch_name(task_id),
            base_ref=self._base_ref or "",
            created_at=created_at,
        )
        with self._lock:
            self._active.setdefault(task_id, worktree)
            return self._active[task_id]

    def _rollback_create(self, path: Path, branch: str) -> None:
        if path in self._registered_paths():
            self._runner.run("worktree", "remove", "--force", str(path), cwd=self._repo_path)
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
        self._runner.run("worktree", "prune", cwd=self._repo_path)
        if self._branch_exists(branch):
            self._runner.run("branch", "-D", branch, cwd=self._repo_path)

    def _branch_exists(self, branch: str) -> bool:
        result = self._runner.run(
            "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}", cwd=self._repo_path
        )
        return result.ok

    def _default_branch(self) -> str:
        result = self._runner.run("symbolic-ref", "--quiet", "--short", "HEAD", cwd=self._repo_path)
        if result.ok and result.stdout.strip():
            return result.stdout.strip()
        return self._runner.check("rev-parse", "HEAD", cwd=self._repo_path).stdout.strip()

    def _registered_paths(self) -> set[Path]:
        result = self._runner.check("worktree", "list", "--porcelain", cwd=self._repo_path)
        paths: set[Path] = set()
        for line in result.stdout.splitlines():
            if line.startswith("worktree "):
                paths.add(Path(line[len("worktree "):]).resolve())
        return paths


__all__ = ["Worktree", "WorktreeConflict", "WorktreeStore", "validate_task_id"]
