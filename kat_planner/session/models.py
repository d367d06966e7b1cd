"""Pydantic models for session records.

A session is the only persistent entity. Records are stored as flat objects
with camelCase keys in a single JSON array (see SessionStore).
"""

from typing import Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kat_planner.config import Stage


class _CamelModel(BaseModel):
    """Base model serialized with camelCase keys, populated by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GeneratedDocument(_CamelModel):
    """A document generated for review (requirements.md, design.md, ...)."""

    title: str
    content: str


class DevelopmentPlan(_CamelModel):
    """Implementation plan stored when the session enters development."""

    implementation_steps: list[str] = Field(default_factory=list)
    milestones: list[str] = Field(default_factory=list)
    estimated_timeline: str = ""


class DerivedArtifacts(_CamelModel):
    """Generated content cached on the session.

    Cached values are returned as-is on repeated reads of the same stage;
    only an explicit revision request clears or regenerates them.
    """

    questions: list[str] = Field(default_factory=list)
    refined_specification: str | None = None
    documents: list[GeneratedDocument] = Field(default_factory=list)
    project_type: str | None = None
    test_specifications: dict[str, Any] | None = None
    revisions: list[str] = Field(default_factory=list)
    development_plan: DevelopmentPlan | None = None


class ApprovalRecord(_CamelModel):
    """Which generated artifacts the caller has accepted."""

    requirements: bool = False
    design: bool = False
    tasks: bool = False
    agents: bool = False
    overall: bool = False
    approval_token: str | None = None
    approved_at: AwareDatetime | None = None


class Session(_CamelModel):
    """Durable record tracking one workflow instance through its stages."""

    id: str = Field(min_length=1)
    stage: Stage
    subject: str
    created_at: AwareDatetime
    last_activity_at: AwareDatetime
    answers: dict[str, str] = Field(default_factory=dict)
    derived_artifacts: DerivedArtifacts = Field(default_factory=DerivedArtifacts)
    approval_record: ApprovalRecord | None = None

    def to_record(self) -> dict:
        """Serialize to the on-disk record shape."""
        return self.model_dump(mode="json", by_alias=True)


class SessionPatch(BaseModel):
    """Partial update applied atomically by SessionStore.update().

    ``id``, ``subject`` and ``created_at`` are immutable and therefore absent.
    ``answers`` are appended: keys already on the session are never overwritten.
    ``revision`` must be set to take the document_review -> refining edge.
    """

    model_config = ConfigDict(extra="forbid")

    stage: Stage | None = None
    answers: dict[str, str] | None = None
    derived_artifacts: DerivedArtifacts | None = None
    approval_record: ApprovalRecord | None = None
    revision: bool = False
