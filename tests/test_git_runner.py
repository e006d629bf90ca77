from __future__ import annotations

from pathlib import Path

import pytest

from nightshift_mcp.git import GitNotFoundError, GitOperationError, GitRunner
from nightshift_mcp.git.utils import sanitize_environment


def test_run_reports_exit_status_without_raising(git_repo: Path, runner: GitRunner) -> None:
    result = runner.run("rev-parse", "--verify", "--quiet", "refs/heads/missing", cwd=git_repo)

    assert not result.ok
    assert result.returncode != 0


def test_check_raises_with_command_context(git_repo: Path, runner: GitRunner) -> None:
    with pytest.raises(GitOperationError) as excinfo:
        runner.check("checkout", "does-not-exist", cwd=git_repo)

    error = excinfo.value
    assert error.returncode != 0
    assert error.args_used[:2] == ("git", "checkout")
    assert error.cwd == git_repo
    assert "does-not-exist" in error.stderr


def test_missing_working_directory_is_a_git_error(tmp_path: Path, runner: GitRunner) -> None:
    with pytest.raises(GitOperationError) as excinfo:
        runner.run("status", cwd=tmp_path / "gone")

    assert excinfo.value.returncode == 128


def test_explicit_executable_must_exist(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitRunner(tmp_path / "no-git-here")


def test_version_reports_git(runner: GitRunner) -> None:
    result = runner.version()

    assert result.ok
    assert result.stdout.startswith("git version")


def test_sanitize_environment_drops_repository_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    monkeypatch.setenv("GIT_WORK_TREE", "/elsewhere")
    monkeypatch.setenv("NIGHTSHIFT_MARKER", "kept")

    env = sanitize_environment({"EXTRA": "1"})

    assert "GIT_DIR" not in env
    assert "GIT_WORK_TREE" not in env
    assert env["NIGHTSHIFT_MARKER"] == "kept"
    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert env["EXTRA"] == "1"
