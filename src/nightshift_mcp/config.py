"""Configuration management for Nightshift MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_INDEX_EXTENSIONS = (".py", ".ts", ".tsx", ".js", ".jsx", ".md", ".json", ".go", ".rs", ".java")


def _split_paths(value: str) -> list[str]:
    return [part.strip() for part in value.split(os.pathsep) if part.strip()]


class NightshiftSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    repo_path: Path = Field(default=Path("."), validation_alias="NIGHTSHIFT_REPO_PATH")
    worktree_root: Path | None = Field(default=None, validation_alias="NIGHTSHIFT_WORKTREE_ROOT")
    branch_prefix: str = Field(default="ns/task/", validation_alias="NIGHTSHIFT_BRANCH_PREFIX")
    base_ref: str | None = Field(default=None, validation_alias="NIGHTSHIFT_BASE_REF")
    git_path: str | None = Field(default=None, validation_alias="GIT_PATH")
    index_path: Path | None = Field(default=None, validation_alias="NIGHTSHIFT_INDEX_PATH")
    index_extensions: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_INDEX_EXTENSIONS, validation_alias="NIGHTSHIFT_INDEX_EXTENSIONS"
    )
    embedding_provider: Literal["none", "hashing", "chroma"] = Field(
        default="hashing", validation_alias="NIGHTSHIFT_EMBEDDING_PROVIDER"
    )
    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="NIGHTSHIFT_PROFILE_PATHS"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    session_id: str | None = Field(default=None, validation_alias="NIGHTSHIFT_SESSION_ID")
    log_level: str = Field(default="INFO", validation_alias="NIGHTSHIFT_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "NIGHTSHIFT_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("branch_prefix")
    @classmethod
    def _validate_branch_prefix(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped or " " in stripped or ".." in stripped:
            raise ValueError("NIGHTSHIFT_BRANCH_PREFIX must be a non-empty ref fragment")
        return stripped

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("profiles"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            return tuple(Path(part) for part in _split_paths(value)) or (Path("profiles"),)
        raise TypeError(
            "NIGHTSHIFT_PROFILE_PATHS must be a list of paths or a path-separated string"
        )

    @field_validator("index_extensions", mode="before")
    @classmethod
    def _parse_extensions(cls, value):
        if value is None or value == "":
            return DEFAULT_INDEX_EXTENSIONS
        if isinstance(value, str):
            value = value.replace(",", os.pathsep).split(os.pathsep)
        if not isinstance(value, (list, tuple)):
            raise TypeError("NIGHTSHIFT_INDEX_EXTENSIONS must be a list or a separated string")
        normalized = []
        for item in value:
            ext = str(item).strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return tuple(normalized) or DEFAULT_INDEX_EXTENSIONS

    def resolved_worktree_root(self) -> Path:
        """Directory holding one worktree per task."""

        if self.worktree_root is not None:
            return self.worktree_root
        repo = self.repo_path.expanduser().resolve()
        return repo.parent / ".nightshift-worktrees"

    def resolved_index_path(self) -> Path:
        """Location of the on-disk code index snapshot."""

        if self.index_path is not None:
            return self.index_path
        return self.repo_path.expanduser().resolve() / ".nightshift" / "code-index.json"


@lru_cache(maxsize=1)
def get_settings() -> NightshiftSettings:
    """Return cached settings instance."""

    settings = NightshiftSettings()
    settings.repo_path = settings.repo_path.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = ["DEFAULT_INDEX_EXTENSIONS", "NightshiftSettings", "get_settings"]
