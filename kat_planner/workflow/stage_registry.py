"""Centralized Stage Registry for the planning workflow.

This module provides a single source of truth for per-stage metadata: the
call name a caller uses to request the stage, which MCP tool carries it, the
fields the call requires, and the guidance shown after the stage completes.

Stages (in workflow order):
- questioning: session created, clarifying questions returned
- refining: answers submitted, refined specification returned
- document_review: requirements/design/tasks/AGENTS documents generated
- final_approval: caller approved the documents
- development: implementation plan issued (terminal)
"""

import json
from dataclasses import dataclass, field
from typing import Any

from kat_planner.config import Stage

INTERACTIVE_TOOL = "start_interactive_spec"
DEVELOPMENT_TOOL = "start_development"

SESSION_ID_PLACEHOLDER = "<sessionId>"


@dataclass(frozen=True)
class StageMetadata:
    """Immutable metadata for a workflow stage."""

    # Identifiers
    stage: Stage
    call_name: str  # e.g., "refine" (the mode a caller passes)
    tool_name: str  # MCP tool that carries this call

    # Display information
    display_name: str
    display_index: int
    description: str

    # Input contract
    required_fields: list[str] = field(default_factory=list)
    optional_fields: list[str] = field(default_factory=list)
    example_values: dict[str, Any] = field(default_factory=dict)

    # Alternative call names accepted for this stage
    aliases: list[str] = field(default_factory=list)

    # Instruction shown to the caller once this stage has been reached
    next_action: str = ""

    def example_payload(self, session_id: str | None = None) -> dict[str, Any]:
        """Build an example payload for calling this stage."""
        payload: dict[str, Any] = {}
        if self.tool_name == INTERACTIVE_TOOL:
            payload["mode"] = self.call_name
        if "sessionId" in self.required_fields:
            payload["sessionId"] = session_id or SESSION_ID_PLACEHOLDER
        for name in self.required_fields:
            if name != "sessionId":
                payload[name] = self.example_values.get(name, "...")
        return payload

    def example_call(self, session_id: str | None = None) -> str:
        """Render a concrete example call string for this stage."""
        return f"{self.tool_name}({json.dumps(self.example_payload(session_id))})"


# =============================================================================
# Stage Definitions - Single Source of Truth
# =============================================================================

_STAGES: list[StageMetadata] = [
    StageMetadata(
        stage=Stage.QUESTIONING,
        call_name="question",
        tool_name=INTERACTIVE_TOOL,
        display_name="Clarification",
        display_index=1,
        description="Create a planning session and return clarifying questions for the idea.",
        required_fields=["subject"],
        example_values={"subject": "your project idea"},
        aliases=["questioning", "initial"],
        next_action=(
            "REQUIRED ACTION: Present these questions to the user, collect their answers, "
            "then call start_interactive_spec with mode='refine', the sessionId, and the "
            "answers. DO NOT CALL ANY OTHER TOOLS."
        ),
    ),
    StageMetadata(
        stage=Stage.REFINING,
        call_name="refine",
        tool_name=INTERACTIVE_TOOL,
        display_name="Refinement",
        display_index=2,
        description="Submit answers to the clarifying questions and receive a refined specification.",
        required_fields=["sessionId", "answers"],
        example_values={"answers": {"language": "python"}},
        aliases=["refining"],
        next_action=(
            "REQUIRED ACTION: Show this specification to the user. Then call "
            "start_interactive_spec with mode='document_review' and the sessionId. "
            "DO NOT CALL ANY OTHER TOOLS."
        ),
    ),
    StageMetadata(
        stage=Stage.DOCUMENT_REVIEW,
        call_name="document_review",
        tool_name=INTERACTIVE_TOOL,
        display_name="Document Review",
        display_index=3,
        description=(
            "Generate requirements.md, design.md, tasks.md and AGENTS.md for review. "
            "Pass revisionRequest to send the specification back for revision."
        ),
        required_fields=["sessionId"],
        optional_fields=["revisionRequest"],
        aliases=["review"],
        next_action=(
            "REQUIRED ACTION: Present these documents to the user and ask: 'Do these "
            "documents look good and should I proceed with development?' Then call "
            "start_interactive_spec with mode='final_approval', the sessionId, and the "
            "user's approvalToken, or with mode='document_review' and a revisionRequest "
            "to revise. DO NOT CALL ANY OTHER TOOLS."
        ),
    ),
    StageMetadata(
        stage=Stage.FINAL_APPROVAL,
        call_name="final_approval",
        tool_name=INTERACTIVE_TOOL,
        display_name="Final Approval",
        display_index=4,
        description="Record explicit approval of the generated documents.",
        required_fields=["sessionId", "approvalToken"],
        example_values={"approvalToken": "yes"},
        aliases=["approve", "approval"],
        next_action=(
            "REQUIRED ACTION: Planning is approved. Call start_development with the "
            "sessionId to begin implementation. DO NOT CALL ANY OTHER TOOLS."
        ),
    ),
    StageMetadata(
        stage=Stage.DEVELOPMENT,
        call_name="development",
        tool_name=DEVELOPMENT_TOOL,
        display_name="Development",
        display_index=5,
        description="Issue the implementation plan and move the session into development.",
        required_fields=["sessionId"],
        optional_fields=["developmentPlan"],
        aliases=["start_development", "develop"],
        next_action=(
            "WORKFLOW COMPLETE - DO NOT CALL ANY MORE PLANNING TOOLS. Present the "
            "development plan to the user and begin implementation."
        ),
    ),
]


class StageRegistry:
    """Registry providing O(1) lookup of stage metadata.

    Example:
        registry = get_stage_registry()

        # Resolve what a caller asked for
        meta = registry.resolve("review")

        # Metadata for a session's current stage
        meta = registry.get(Stage.REFINING)
    """

    def __init__(self, stages: list[StageMetadata] | None = None):
        self._stages = stages or _STAGES

        self._by_stage: dict[Stage, StageMetadata] = {s.stage: s for s in self._stages}
        self._by_name: dict[str, StageMetadata] = {}
        for meta in self._stages:
            for name in (meta.call_name, meta.stage.value, *meta.aliases):
                self._by_name[name.lower()] = meta

    def get(self, stage: Stage) -> StageMetadata:
        """Get stage metadata for a stage enum value."""
        return self._by_stage[stage]

    def resolve(self, name: str) -> StageMetadata:
        """Resolve a call name, stage value, or alias to stage metadata.

        Args:
            name: Name as supplied by a caller (case-insensitive)

        Returns:
            StageMetadata for the stage

        Raises:
            ValueError: If the name is not recognized
        """
        key = (name or "").strip().lower()
        if key not in self._by_name:
            raise ValueError(
                f"Unknown stage: {name!r}. Valid stages: {self.call_names()}"
            )
        return self._by_name[key]

    def resolve_safe(self, name: str) -> StageMetadata | None:
        """Resolve a name, returning None if not recognized."""
        return self._by_name.get((name or "").strip().lower())

    def call_names(self) -> list[str]:
        """Canonical call names in workflow order."""
        return [s.call_name for s in self._stages]

    def all_stages(self) -> list[StageMetadata]:
        """All stages in workflow order."""
        return list(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self):
        return iter(self._stages)


_registry: StageRegistry | None = None


def get_stage_registry() -> StageRegistry:
    """Get the global stage registry singleton."""
    global _registry
    if _registry is None:
        _registry = StageRegistry()
    return _registry


def resolve_stage(name: str) -> Stage:
    """Resolve a caller-supplied name to a Stage. Raises ValueError if unknown."""
    return get_stage_registry().resolve(name).stage
