"""Response envelopes returned to callers.

Every call, successful or not, produces the same top-level shape:

- content: text the calling agent should display
- structuredContent: machine-readable stage and session snapshot
- nextAction: instruction string
- nextCall: the next legal call (stage, callName, requiredFields, exampleCall)
- isComplete: True only once development has been entered, or when an error
  was raised against a session that is already in development

Errors add ``error: true``, ``errorCategory``, ``message`` and a ``recovery``
object naming the legal next calls with a concrete example call.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kat_planner.config import ErrorCategory, Stage
from kat_planner.errors import WorkflowError
from kat_planner.session.models import Session
from kat_planner.workflow.stage_registry import StageMetadata, get_stage_registry
from kat_planner.workflow.transitions import ENTRY_STAGE, is_terminal, next_stages


class _EnvelopeModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NextCall(_EnvelopeModel):
    """The next call a caller should make."""

    stage: str = Field(description="Stage the call moves the session into")
    call_name: str = Field(description="Mode or call name to pass")
    required_fields: list[str] = Field(description="Fields the call must carry")
    example_call: str = Field(description="Concrete example call")


class Recovery(_EnvelopeModel):
    """How to recover from a failed call."""

    suggested_action: str
    valid_next_steps: list[str] = Field(min_length=1)
    example_call: str


@dataclass
class StageOutcome:
    """Result of a successful stage handler, before wrapping.

    Attributes:
        stage: Stage the session is in after the call
        session: Session snapshot after the call
        content: Displayable text for this stage
        data: Stage-specific structured fields
        is_complete: True once the workflow has reached development
        idempotent: True when the call re-read cached results
    """

    stage: Stage
    session: Session
    content: str
    data: dict[str, Any] = field(default_factory=dict)
    is_complete: bool = False
    idempotent: bool = False


def legal_next_stages(stage: Stage) -> list[Stage]:
    """Stages a caller may request next for a session in ``stage``."""
    if stage == Stage.DOCUMENT_REVIEW:
        # Re-reading and revision requests both go through document_review
        return [Stage.FINAL_APPROVAL, Stage.DOCUMENT_REVIEW]
    return next_stages(stage, include_revisions=False)


def _step_label(meta: StageMetadata) -> str:
    return f"{meta.call_name} ({meta.tool_name})"


def next_call_for(stage: Stage, session_id: str | None) -> NextCall | None:
    """Primary next call from ``stage``; None when the stage is terminal."""
    targets = next_stages(stage, include_revisions=False)
    if not targets:
        return None
    meta = get_stage_registry().get(targets[0])
    return NextCall(
        stage=meta.stage.value,
        call_name=meta.call_name,
        required_fields=list(meta.required_fields),
        example_call=meta.example_call(session_id),
    )


def session_snapshot(session: Session) -> dict[str, Any]:
    """Machine-readable session state (documents omitted for size)."""
    record = session.to_record()
    artifacts = record.pop("derivedArtifacts", {})
    record["documentTitles"] = [doc["title"] for doc in artifacts.get("documents", [])]
    record["revisions"] = artifacts.get("revisions", [])
    record["projectType"] = artifacts.get("projectType")
    return record


def build_success(outcome: StageOutcome) -> dict[str, Any]:
    """Wrap a stage outcome with next-step guidance."""
    registry = get_stage_registry()
    meta = registry.get(outcome.stage)
    session_id = outcome.session.id
    next_call = next_call_for(outcome.stage, session_id)

    structured = {
        "sessionId": session_id,
        "stage": outcome.stage.value,
        "stageName": meta.display_name,
        "progress": f"{meta.display_index}/{len(registry)}",
        "idempotent": outcome.idempotent,
        **outcome.data,
        "session": session_snapshot(outcome.session),
    }

    content = outcome.content
    if meta.next_action:
        content = f"{content}\n\n{meta.next_action}"

    return {
        "content": content,
        "structuredContent": structured,
        "nextAction": meta.next_action,
        "nextCall": next_call.model_dump(by_alias=True) if next_call else None,
        "isComplete": outcome.is_complete,
    }


def build_recovery(
    category: ErrorCategory,
    session: Session | None = None,
    attempted: Stage | None = None,
    session_id: str | None = None,
) -> Recovery:
    """Choose the legal next calls for a failed request."""
    registry = get_stage_registry()
    entry = registry.get(ENTRY_STAGE)

    if session is not None and is_terminal(session.stage):
        return Recovery(
            suggested_action=(
                "This session has completed planning and is in development. "
                "Do not call planning tools again for it; start a new session for a new idea."
            ),
            valid_next_steps=[_step_label(entry)],
            example_call=entry.example_call(),
        )

    if category == ErrorCategory.MISSING_INPUT and attempted is not None:
        meta = registry.get(attempted)
        return Recovery(
            suggested_action=(
                f"Call {meta.call_name} again with all required fields: "
                f"{', '.join(meta.required_fields)}"
            ),
            valid_next_steps=[_step_label(meta)],
            example_call=meta.example_call(session.id if session else session_id),
        )

    if session is None or category == ErrorCategory.NOT_FOUND:
        if category in (ErrorCategory.NOT_FOUND, ErrorCategory.MISSING_INPUT):
            action = "Start a new planning session"
        else:
            action = "Retry the call; if it keeps failing, start a new planning session"
        return Recovery(
            suggested_action=action,
            valid_next_steps=[_step_label(entry)],
            example_call=entry.example_call(),
        )

    targets = [registry.get(s) for s in legal_next_stages(session.stage)]

    return Recovery(
        suggested_action=(
            f"Session is in {session.stage.value}. Call {targets[0].call_name} next "
            f'with sessionId="{session.id}"'
        ),
        valid_next_steps=[_step_label(t) for t in targets],
        example_call=targets[0].example_call(session.id),
    )


def build_error(
    error: WorkflowError,
    session: Session | None = None,
    attempted: Stage | None = None,
    session_id: str | None = None,
) -> dict[str, Any]:
    """Build an error envelope for a typed workflow error.

    Args:
        error: The error raised while handling the call
        session: Session the call referred to, when it exists
        attempted: Stage the caller asked for, when known
        session_id: Session id from the payload, when present
    """
    category = error.category
    recovery = build_recovery(category, session=session, attempted=attempted, session_id=session_id)
    terminal = session is not None and is_terminal(session.stage)

    content = (
        f"Error: {error.message}\n\n"
        f"Recovery: {recovery.suggested_action}\n\n"
        f"Valid next steps: {', '.join(recovery.valid_next_steps)}\n\n"
        f"Example call: {recovery.example_call}"
    )
    structured: dict[str, Any] = {
        "error": True,
        "errorCategory": category.value,
        "sessionId": session.id if session else session_id,
        "stage": session.stage.value if session else None,
        "attemptedStage": attempted.value if attempted else None,
    }
    next_call = None if terminal or session is None else next_call_for(session.stage, session.id)

    return {
        "content": content,
        "structuredContent": structured,
        "nextAction": recovery.suggested_action,
        "nextCall": next_call.model_dump(by_alias=True) if next_call else None,
        "isComplete": terminal,
        "error": True,
        "errorCategory": category.value,
        "message": error.message,
        "recovery": recovery.model_dump(by_alias=True),
    }


def build_status(session: Session) -> dict[str, Any]:
    """Read-only snapshot of a session with its legal next calls."""
    registry = get_stage_registry()
    meta = registry.get(session.stage)
    terminal = is_terminal(session.stage)

    next_valid = [registry.get(s).call_name for s in legal_next_stages(session.stage)]

    lines = [
        f"Session {session.id}",
        f"Subject: {session.subject}",
        f"Stage: {meta.display_name} ({meta.display_index}/{len(registry)})",
    ]
    if terminal:
        lines.append("Planning is complete; this session is in development.")
    else:
        lines.append(f"Next valid calls: {', '.join(next_valid)}")

    next_call = next_call_for(session.stage, session.id)
    return {
        "content": "\n".join(lines),
        "structuredContent": {
            "sessionId": session.id,
            "stage": session.stage.value,
            "stageName": meta.display_name,
            "nextValidStages": next_valid,
            "isTerminal": terminal,
            "session": session_snapshot(session),
        },
        "nextAction": meta.next_action,
        "nextCall": next_call.model_dump(by_alias=True) if next_call else None,
        "isComplete": terminal,
    }
