"""FastMCP server bootstrap for Nightshift."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import FastMCP

from . import __version__
from .agents import AgentRegistry
from .config import NightshiftSettings, get_settings
from .git import GitNotFoundError, GitOperationError, GitRunner, ProvenanceCommitter, WorktreeStore
from .index import CodeIndex, build_provider
from .orchestrator import TaskOrchestrator
from .profiles import ProfileLoader
from .storage import ChromaStore, ChromaUnavailableError
from .tools import register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Nightshift server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[NightshiftSettings] = None,
    git_runner: GitRunner | None = None,
    chroma_store: ChromaStore | None = None,
) -> FastMCP:
    """Wire the git, index and orchestration components into a FastMCP server."""

    settings = settings or get_settings()
    repo_path = settings.repo_path.expanduser().resolve()

    git_metadata: dict[str, Any] = {
        "available": False,
        "version": None,
        "repository": str(repo_path),
        "error": None,
    }
    try:
        git_runner = git_runner or GitRunner(Path(settings.git_path) if settings.git_path else None)
        version_result = git_runner.version()
        if version_result.ok:
            git_metadata["version"] = version_result.stdout.strip()
        probe = git_runner.run("rev-parse", "--is-inside-work-tree", cwd=repo_path)
        if probe.ok:
            git_metadata["available"] = True
        else:
            git_metadata["error"] = probe.stderr.strip() or f"{repo_path} is not a git repository"
    except GitNotFoundError as exc:
        git_metadata["error"] = str(exc)
        git_runner = None
    except GitOperationError as exc:
        git_metadata["error"] = str(exc)

    chroma_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "nightshift_events",
        "error": None,
    }
    try:
        chroma_store = chroma_store or ChromaStore(settings.chroma_persist_path)
        chroma_store.ping()
        chroma_metadata["available"] = True
    except ChromaUnavailableError as exc:
        chroma_metadata["error"] = str(exc)
        chroma_store = None

    worktrees: WorktreeStore | None = None
    committer: ProvenanceCommitter | None = None
    code_index: CodeIndex | None = None
    if git_runner is not None and git_metadata["available"]:
        worktrees = WorktreeStore(
            repo_path,
            settings.resolved_worktree_root(),
            runner=git_runner,
            branch_prefix=settings.branch_prefix,
            base_ref=settings.base_ref,
            events=chroma_store,
        )
        committer = ProvenanceCommitter(git_runner)
        code_index = CodeIndex(
            repo_path,
            runner=git_runner,
            index_path=settings.resolved_index_path(),
            extensions=settings.index_extensions,
            embedding_provider=build_provider(settings.embedding_provider),
        )

    profile_loader = ProfileLoader(settings.profile_paths)
    registry = AgentRegistry(profile_loader.load_roles())
    orchestrator = TaskOrchestrator(
        registry,
        worktrees=worktrees,
        committer=committer,
        code_index=code_index,
        events=chroma_store,
        session_id=settings.session_id,
    )

    server = FastMCP(
        name="Nightshift MCP",
        version=__version__,
        instructions=(
            "Nightshift coordinates planner, coder, reviewer, tester and curator agents. "
            "Each task chain works in its own git worktree, every commit carries the prompt "
            "and context that produced it, and the code index answers keyword and semantic "
            "queries about the repository."
        ),
    )

    handles = register_tools(
        server,
        orchestrator=orchestrator,
        worktrees=worktrees,
        committer=committer,
        code_index=code_index,
    )

    @server.resource(
        "resource://nightshift/state",
        name="nightshift_state",
        description="Agent states, active tasks and component availability for this session.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def state_resource() -> str:
        """Return a JSON string summarizing orchestration state."""

        index_stats = code_index.get_index_stats().to_dict() if code_index is not None else None
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "state": orchestrator.get_system_state().to_dict(),
            "tasks": {
                "active": [task.to_dict() for task in orchestrator.list_tasks()],
                "archived_count": len(orchestrator.archived_tasks()),
            },
            "git": git_metadata,
            "index": {
                "embedding_provider": settings.embedding_provider,
                "stats": index_stats,
            },
            "storage": {"chroma": chroma_metadata},
        }
        return json.dumps(payload)

    setattr(server, "git_runner", git_runner)
    setattr(server, "git_metadata", git_metadata)
    setattr(server, "chroma_store", chroma_store)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "orchestrator", orchestrator)
    setattr(server, "code_index", code_index)
    setattr(server, "worktrees", worktrees)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Nightshift MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching Nightshift MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "git_available": getattr(server, "git_metadata", {}).get("available"),
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
            "session_id": getattr(server, "orchestrator").session_id,
        },
    )
    server.run()


if __name__ == "__main__":
    main()
