"""Role profiles describing each kind of agent and its handoff contract."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class RoleProfile(BaseModel):
    """Configuration for one agent role."""

    id: str = Field(..., description="Role identifier; also the id of the role's agent.")
    title: str = Field(default="", description="Display title for the role.")
    persona: str = Field(default="", description="Narrative framing for the agent's tone and role.")
    system_prompt: str = Field(
        default="",
        description="Instructions placed at the top of every prompt built for this role.",
    )
    goalset: list[str] = Field(default_factory=list, description="Ordered high-level goals.")
    constraints: list[str] = Field(default_factory=list, description="Guardrails imposed on the role.")
    accepts_handoff_from: list[str] = Field(
        default_factory=list,
        description="Roles whose completed tasks this role may take over.",
    )
    accepts_direct_assignment: bool = Field(
        default=True,
        description="Whether a task may be assigned to this role without a predecessor.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Role profile id must not be empty")
        return normalized

    @field_validator("goalset", "constraints", "accepts_handoff_from", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return [str(item).strip() for item in value]
        raise TypeError("Goalset, constraints and accepts_handoff_from must be sequences of strings")

    def accepts_from(self, role_id: str) -> bool:
        return role_id in self.accepts_handoff_from


DEFAULT_ROLE_PROFILES: tuple[RoleProfile, ...] = (
    RoleProfile(
        id="planner",
        title="Planner",
        persona="Breaks requests into small, verifiable implementation steps.",
        system_prompt="You are the planner. Produce a concrete plan the coder can follow.",
        goalset=["Clarify scope", "List the files to touch", "Define acceptance checks"],
        accepts_handoff_from=["reviewer"],
    ),
    RoleProfile(
        id="coder",
        title="Coder",
        persona="Implements planned changes with small, focused commits.",
        system_prompt="You are the coder. Implement the plan in your worktree and commit the result.",
        goalset=["Implement the plan", "Keep the build green"],
        constraints=["Work only inside the assigned worktree"],
        accepts_handoff_from=["planner", "reviewer", "tester"],
    ),
    RoleProfile(
        id="reviewer",
        title="Reviewer",
        persona="Reads diffs critically and either approves or requests changes.",
        system_prompt="You are the reviewer. Review the latest commits against the plan.",
        goalset=["Check correctness", "Check the change matches its stated intent"],
        accepts_handoff_from=["coder"],
    ),
    RoleProfile(
        id="tester",
        title="Tester",
        persona="Writes and runs tests for freshly implemented behaviour.",
        system_prompt="You are the tester. Exercise the new behaviour and report failures.",
        accepts_handoff_from=["coder", "reviewer"],
    ),
    RoleProfile(
        id="curator",
        title="Curator",
        persona="Documents and organizes completed work.",
        system_prompt="You are the curator. Document what changed and why.",
        accepts_handoff_from=["reviewer", "tester"],
    ),
)


__all__ = ["DEFAULT_ROLE_PROFILES", "RoleProfile"]
