"""Role profile loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import DEFAULT_ROLE_PROFILES, RoleProfile


class ProfileLoadError(RuntimeError):
    """Raised when one or more profile files cannot be parsed."""


class ProfileLoader:
    """Loads role profiles from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, RoleProfile]:
        """Load profiles from all configured search paths.

        Later search paths override earlier ones when profile ids collide.
        """

        profiles: dict[str, RoleProfile] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    profile = RoleProfile.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Profile validation error in {path}: {exc}")
                    continue

                profiles[profile.id] = profile

        if errors:
            raise ProfileLoadError("; ".join(errors))

        return profiles

    def load_roles(self) -> list[RoleProfile]:
        """Profiles from disk, or the built-in planner/coder/reviewer/tester/curator set when none exist.

        Every role named in an ``accepts_handoff_from`` list must itself be defined.
        """

        loaded = self.load_all()
        roles = list(loaded.values()) if loaded else list(DEFAULT_ROLE_PROFILES)
        known = {role.id for role in roles}
        unknown = sorted(
            {source for role in roles for source in role.accepts_handoff_from if source not in known}
        )
        if unknown:
            raise ProfileLoadError(f"Handoff contract references undefined roles: {', '.join(unknown)}")
        return roles


__all__ = ["ProfileLoadError", "ProfileLoader", "RoleProfile"]
