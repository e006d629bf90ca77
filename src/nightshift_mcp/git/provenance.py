"""Commits that carry structured provenance metadata.

The metadata travels inside the commit message so a plain clone is enough
to reconstruct why each change was made::

    Add greeting helper

    <!-- NIGHTSHIFT_METADATA
    {"agentId": "coder", "contextSummary": "...", "expectedOutcome": "...", ...}
    -->

The block is an HTML comment so renderers that do not know about it hide it.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .runner import GitOperationError, GitRunner

logger = logging.getLogger(__name__)

COMMIT_METADATA_START = "<!-- NIGHTSHIFT_METADATA"
COMMIT_METADATA_END = "-->"

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_KNOWN_KEYS = {"prompt", "expectedOutcome", "contextSummary", "agentId", "sessionId", "timestamp"}
_BLOCK_START = re.compile(rf"^{re.escape(COMMIT_METADATA_START)}[ \t]*$", re.MULTILINE)


class NothingToCommit(RuntimeError):
    """Raised when a worktree has no changes to record."""

    def __init__(self, worktree_path: Path) -> None:
        self.worktree_path = Path(worktree_path)
        super().__init__(f"Nothing to commit in {self.worktree_path}")


class CommitMetadata(BaseModel):
    """Why a commit was made, and by whom."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    commit_hash: str | None = Field(
        default=None,
        description="Hash of the commit carrying this metadata; filled in when read from history.",
    )
    prompt: str = Field(..., description="Instruction the agent acted on.")
    expected_outcome: str = Field(..., alias="expectedOutcome")
    context_summary: str = Field(..., alias="contextSummary")
    agent_id: str = Field(..., alias="agentId")
    session_id: str = Field(..., alias="sessionId")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    extras: dict[str, Any] = Field(
        default_factory=dict,
        description="Keys written by other producers; kept verbatim and re-emitted on encode.",
    )

    @field_validator("extras")
    @classmethod
    def _reject_reserved_extras(cls, value: dict[str, Any]) -> dict[str, Any]:
        reserved = sorted(set(value) & _KNOWN_KEYS)
        if reserved:
            raise ValueError(f"extras must not redefine metadata keys: {', '.join(reserved)}")
        return value

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", by_alias=True, exclude={"commit_hash", "extras"})
        return {**self.extras, **payload}

    def to_block(self) -> str:
        # Angle brackets are escaped so field text can neither open nor close the comment.
        body = json.dumps(self.to_payload(), sort_keys=True, ensure_ascii=False)
        body = body.replace("<", "\\u003c").replace(">", "\\u003e")
        return f"{COMMIT_METADATA_START}\n{body}\n{COMMIT_METADATA_END}"

    @classmethod
    def from_payload(cls, payload: dict[str, Any], *, commit_hash: str | None = None) -> "CommitMetadata":
        known = {key: value for key, value in payload.items() if key in _KNOWN_KEYS}
        extras = {key: value for key, value in payload.items() if key not in _KNOWN_KEYS}
        return cls.model_validate({**known, "extras": extras, "commit_hash": commit_hash})


@dataclass(slots=True, frozen=True)
class EnhancedCommit:
    commit_hash: str
    message: str
    metadata: CommitMetadata | None


@dataclass(slots=True)
class DiffStats:
    additions: int = 0
    deletions: int = 0
    files_changed: int = 0
    changed_files: list[str] = field(default_factory=list)

    @property
    def total_lines(self) -> int:
        return self.additions + self.deletions


def compose_message(message: str, metadata: CommitMetadata) -> str:
    """Return ``message`` followed by the encoded metadata block."""

    return f"{message.rstrip()}\n\n{metadata.to_block()}\n"


def split_message(raw: str, *, commit_hash: str | None = None) -> tuple[str, CommitMetadata | None]:
    """Separate the human message from its metadata block.

    A missing block yields ``None``; so does a malformed one, which is logged.
    """

    starts = list(_BLOCK_START.finditer(raw))
    if not starts:
        return raw.strip(), None

    start = starts[-1]
    human = raw[: start.start()].strip()
    index = start.end()
    while index < len(raw) and raw[index].isspace():
        index += 1
    try:
        payload, _ = json.JSONDecoder().raw_decode(raw, index)
        if not isinstance(payload, dict):
            raise ValueError("metadata block is not a JSON object")
        return human, CommitMetadata.from_payload(payload, commit_hash=commit_hash)
    except (ValueError, ValidationError) as exc:
        logger.warning(
            "Ignoring malformed commit metadata",
            extra={"commit_hash": commit_hash, "error": str(exc)},
        )
        return human, None


class ProvenanceCommitter:
    """Create commits with embedded metadata and read them back."""

    def __init__(
        self,
        runner: GitRunner,
        *,
        author_name: str | None = None,
        author_email: str | None = None,
    ) -> None:
        self._runner = runner
        self._identity: tuple[str, ...] = ()
        if author_name and author_email:
            self._identity = ("-c", f"user.name={author_name}", "-c", f"user.email={author_email}")

    def commit_with_metadata(self, worktree_path: Path, message: str, metadata: CommitMetadata) -> str:
        """Stage everything in the worktree and commit it with ``metadata``.

        Returns the new commit hash.
        """

        if not message.strip():
            raise ValueError("Commit message must not be empty")

        path = Path(worktree_path)
        self._runner.check("add", "-A", cwd=path)
        staged = self._runner.run("diff", "--cached", "--quiet", cwd=path)
        if staged.returncode == 0:
            raise NothingToCommit(path)
        if staged.returncode != 1:
            raise GitOperationError(("git", "diff", "--cached", "--quiet"), staged.returncode, staged.stderr, cwd=path)

        self._runner.check(
            *self._identity,
            "commit",
            "--no-verify",
            "--cleanup=verbatim",
            "-F",
            "-",
            cwd=path,
            input=compose_message(message, metadata),
        )
        commit_hash = self._runner.check("rev-parse", "HEAD", cwd=path).stdout.strip()
        logger.info(
            "Committed with provenance",
            extra={
                "commit_hash": commit_hash,
                "agent_id": metadata.agent_id,
                "session_id": metadata.session_id,
                "worktree": str(path),
            },
        )
        return commit_hash

    def get_enhanced_commit_history(self, worktree_path: Path, limit: int | None = None) -> list[EnhancedCommit]:
        """Walk ``HEAD`` ancestry newest-first, parsing metadata where present."""

        path = Path(worktree_path)
        if not self._has_commits(path):
            return []

        args = ["log", "--topo-order", f"--format=%H{_FIELD_SEP}%B{_RECORD_SEP}"]
        if limit is not None:
            if limit < 1:
                return []
            args.append(f"--max-count={limit}")
        args.append("HEAD")
        output = self._runner.check(*args, cwd=path).stdout

        commits: list[EnhancedCommit] = []
        for record in output.split(_RECORD_SEP):
            record = record.lstrip("\n")
            if not record:
                continue
            commit_hash, _, raw = record.partition(_FIELD_SEP)
            message, metadata = split_message(raw, commit_hash=commit_hash)
            commits.append(EnhancedCommit(commit_hash=commit_hash, message=message, metadata=metadata))
        return commits

    def extract_commit_metadata(self, worktree_path: Path, commit: str = "HEAD") -> CommitMetadata | None:
        path = Path(worktree_path)
        output = self._runner.check(
            "log", "-1", f"--format=%H{_FIELD_SEP}%B", commit, cwd=path
        ).stdout
        commit_hash, _, raw = output.partition(_FIELD_SEP)
        return split_message(raw, commit_hash=commit_hash.strip())[1]

    def diff_stats(self, worktree_path: Path) -> DiffStats:
        """Summarize uncommitted changes, untracked files included."""

        path = Path(worktree_path)
        stats = DiffStats()
        if self._has_commits(path):
            numstat = self._runner.check("diff", "HEAD", "--numstat", cwd=path).stdout
            for line in numstat.splitlines():
                parts = line.split("\t", 2)
                if len(parts) != 3:
                    continue
                added, deleted, name = parts
                # Binary files report "-" for both counts.
                stats.additions += int(added) if added.isdigit() else 0
                stats.deletions += int(deleted) if deleted.isdigit() else 0
                stats.changed_files.append(name)

        untracked = self._runner.check("ls-files", "--others", "--exclude-standard", cwd=path).stdout
        for name in untracked.splitlines():
            if not name:
                continue
            stats.changed_files.append(name)
            try:
                stats.additions += len((path / name).read_text(encoding="utf-8").splitlines())
            except (OSError, UnicodeDecodeError):
                continue

        stats.files_changed = len(stats.changed_files)
        return stats

    def is_clean(self, worktree_path: Path) -> bool:
        status = self._runner.check("status", "--porcelain", cwd=Path(worktree_path)).stdout
        return status.strip() == ""

    def current_branch(self, worktree_path: Path) -> str:
        return self._runner.check("rev-parse", "--abbrev-ref", "HEAD", cwd=Path(worktree_path)).stdout.strip()

    def _has_commits(self, path: Path) -> bool:
        return self._runner.run("rev-parse", "--verify", "--quiet", "HEAD", cwd=path).ok


__all__ = [
    "COMMIT_METADATA_END",
    "COMMIT_METADATA_START",
    "CommitMetadata",
    "DiffStats",
    "EnhancedCommit",
    "NothingToCommit",
    "ProvenanceCommitter",
    "compose_message",
    "split_message",
]
