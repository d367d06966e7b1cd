"""Workflow orchestrator: one handler per stage call.

``invoke(stage_name, payload)`` is the single entry point used by the
transport. It never raises: typed workflow errors, payload validation errors
and unexpected failures all come back as error envelopes.

Preconditions are checked in a fixed order and the first failure wins:
    1. session id present
    2. session exists
    3. requested stage is a legal transition
    4. stage-specific fields are well-formed
    5. the updated record is persisted

Design Principles:
- The store re-checks every stage change under its lock, so of two
  concurrent identical advances only the first succeeds
- Generated content is cached on the session; only a revision request
  regenerates it
- Each call runs inside an OpenTelemetry stage span
"""

import logging
from typing import Any

from pydantic import ValidationError

from kat_planner.config import ACCEPTED_APPROVAL_TOKENS, REVIEW_DOCUMENTS, Stage
from kat_planner.errors import MissingInputError, SessionNotFoundError, WorkflowError
from kat_planner.session.models import ApprovalRecord, DerivedArtifacts, Session, SessionPatch
from kat_planner.session.session_store import SessionStore, stage_counts
from kat_planner.telemetry.spans import record_outcome, stage_span
from kat_planner.workflow import content
from kat_planner.workflow.envelope import (
    StageOutcome,
    build_error,
    build_status,
    build_success,
)
from kat_planner.workflow.payloads import describe_validation_error, parse_payload, require_session_id
from kat_planner.workflow.stage_registry import get_stage_registry
from kat_planner.workflow.transitions import ENTRY_STAGE, validate_sequence, validate_transition

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    """Drives sessions through the planning workflow.

    Example:
        orchestrator = WorkflowOrchestrator(SessionStore(path))
        result = orchestrator.invoke("question", {"subject": "build a CLI tool"})
        session_id = result["structuredContent"]["sessionId"]
        orchestrator.invoke("refine", {"sessionId": session_id, "answers": {"lang": "go"}})
    """

    def __init__(self, store: SessionStore):
        self.store = store
        self._handlers = {
            Stage.REFINING: self._handle_refine,
            Stage.DOCUMENT_REVIEW: self._handle_review,
            Stage.FINAL_APPROVAL: self._handle_approval,
            Stage.DEVELOPMENT: self._handle_development,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def invoke(self, stage_name: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Handle one stage call and return its envelope.

        Args:
            stage_name: Call name, stage value, or alias (case-insensitive)
            payload: Stage-specific fields

        Returns:
            Success or error envelope
        """
        registry = get_stage_registry()
        meta = registry.resolve_safe(stage_name) if isinstance(stage_name, str) else None
        if meta is None:
            error = MissingInputError(
                f"Unknown stage: {stage_name!r}. Valid stages: {registry.call_names()}",
                field_name="mode",
            )
            logger.warning(error.message)
            return build_error(error)

        target = meta.stage
        session_id: str | None = None
        session: Session | None = None
        try:
            with stage_span(meta.call_name, _raw_session_id(payload)) as span:
                if target == ENTRY_STAGE:
                    outcome = self._handle_question(payload)
                else:
                    session_id = require_session_id(payload)
                    session = self.store.get(session_id)
                    outcome = self._handlers[target](session, payload)
                record_outcome(span, outcome.stage.value, outcome.is_complete, outcome.idempotent)
        except WorkflowError as e:
            logger.info(f"{meta.call_name} rejected ({e.category.value}): {e.message}")
            return build_error(e, session=self._current(session), attempted=target, session_id=session_id)
        except ValidationError as e:
            message, field_name = describe_validation_error(e)
            error = MissingInputError(message, field_name=field_name)
            logger.info(f"{meta.call_name} rejected (MissingInput): {message}")
            return build_error(error, session=self._current(session), attempted=target, session_id=session_id)
        except Exception as e:
            logger.exception(f"Unexpected error handling {meta.call_name}: {e}")
            error = WorkflowError(f"Internal error while handling {meta.call_name}: {e}")
            return build_error(error, session=self._current(session), attempted=target, session_id=session_id)

        logger.info(
            f"{meta.call_name} completed: session={outcome.session.id} stage={outcome.stage.value}"
        )
        return build_success(outcome)

    def session_status(self, session_id: str) -> dict[str, Any]:
        """Snapshot of a session without recording activity."""
        try:
            if not session_id:
                raise MissingInputError("Session ID required", field_name="sessionId")
            session = self.store.peek(session_id)
        except WorkflowError as e:
            return build_error(e, session_id=session_id or None)
        return build_status(session)

    def validate_workflow(self, stages: list[str]) -> dict[str, Any]:
        """Check a planned sequence of stage calls against the transition graph."""
        if not isinstance(stages, list) or not all(isinstance(s, str) for s in stages):
            return build_error(MissingInputError("stages must be a list of stage names", "stages"))

        result = validate_sequence(stages)
        if result.valid:
            summary = "Workflow sequence is valid."
        else:
            summary = "Workflow sequence is invalid:\n" + "\n".join(f"- {e}" for e in result.errors)
        next_steps = ", ".join(result.next_valid_stages) or "none (workflow complete)"

        return {
            "content": f"{summary}\n\nNext valid stages: {next_steps}",
            "structuredContent": {
                "valid": result.valid,
                "errors": result.errors,
                "nextValidStages": result.next_valid_stages,
                "finalStage": result.final_stage.value if result.final_stage else None,
            },
            "nextAction": f"Next valid stages: {next_steps}",
            "nextCall": None,
            "isComplete": False,
        }

    def health(self) -> dict[str, Any]:
        """Live session counts and storage state."""
        report = self.store.last_load_report
        return {
            "status": "healthy" if self.store.storage_available else "degraded",
            "activeSessions": self.store.count(),
            "maxSessions": self.store.max_sessions,
            "sessionTimeoutSeconds": self.store.session_timeout_seconds,
            "sessionFile": str(self.store.session_file),
            "storageAvailable": self.store.storage_available,
            "sessionsByStage": stage_counts(self.store),
            "lastLoad": {
                "loaded": report.loaded,
                "skippedInvalid": report.skipped_invalid,
                "expired": report.expired,
                "corrupt": report.corrupt,
            },
        }

    # =========================================================================
    # Stage handlers
    # =========================================================================

    def _handle_question(self, payload: Any) -> StageOutcome:
        parsed = parse_payload(Stage.QUESTIONING, payload)
        questions = content.generate_questions(parsed.subject)
        artifacts = DerivedArtifacts(
            questions=questions,
            project_type=content.detect_project_type(parsed.subject),
        )
        session = self.store.create(parsed.subject, derived_artifacts=artifacts)

        return StageOutcome(
            stage=Stage.QUESTIONING,
            session=session,
            content=content.render_questions(session.subject, questions),
            data={"subject": session.subject, "questions": questions},
        )

    def _handle_refine(self, session: Session, payload: Any) -> StageOutcome:
        validate_transition(session.stage, Stage.REFINING)
        parsed = parse_payload(Stage.REFINING, payload)

        # Mirror the store's append rule so the text matches what is stored
        answers = dict(session.answers)
        for key, value in parsed.answers.items():
            answers.setdefault(key, value)

        artifacts = session.derived_artifacts
        spec = content.generate_refined_specification(session.subject, answers, artifacts.revisions)
        artifacts = artifacts.model_copy(update={"refined_specification": spec})

        updated = self.store.update(
            session.id,
            SessionPatch(stage=Stage.REFINING, answers=parsed.answers, derived_artifacts=artifacts),
        )
        return StageOutcome(
            stage=Stage.REFINING,
            session=updated,
            content=f"Refined Specification\n\n{spec}",
            data={"refinedSpecification": spec, "answers": updated.answers},
        )

    def _handle_review(self, session: Session, payload: Any) -> StageOutcome:
        if session.stage == Stage.DOCUMENT_REVIEW:
            parsed = parse_payload(Stage.DOCUMENT_REVIEW, payload)
            if parsed.revision_request:
                return self._revise(session, parsed.revision_request)
            return self._review_outcome(session, idempotent=True)

        validate_transition(session.stage, Stage.DOCUMENT_REVIEW)
        parsed = parse_payload(Stage.DOCUMENT_REVIEW, payload)

        artifacts = session.derived_artifacts
        if parsed.revision_request:
            artifacts = self._with_revision(session, parsed.revision_request)
        elif not artifacts.refined_specification:
            spec = content.generate_refined_specification(
                session.subject, session.answers, artifacts.revisions
            )
            artifacts = artifacts.model_copy(update={"refined_specification": spec})

        if not artifacts.documents:
            project_type = artifacts.project_type or content.detect_project_type(session.subject)
            documents = content.generate_documents(
                session.subject, artifacts.refined_specification, project_type
            )
            artifacts = artifacts.model_copy(
                update={"documents": documents, "project_type": project_type}
            )
        if artifacts.test_specifications is None:
            artifacts = artifacts.model_copy(
                update={
                    "test_specifications": content.generate_test_specifications(
                        artifacts.project_type or content.detect_project_type(session.subject)
                    )
                }
            )

        updated = self.store.update(
            session.id, SessionPatch(stage=Stage.DOCUMENT_REVIEW, derived_artifacts=artifacts)
        )
        return self._review_outcome(updated)

    def _revise(self, session: Session, revision_request: str) -> StageOutcome:
        """Take the revision edge back to refining with a regenerated specification."""
        artifacts = self._with_revision(session, revision_request)
        updated = self.store.update(
            session.id,
            SessionPatch(stage=Stage.REFINING, revision=True, derived_artifacts=artifacts),
        )
        spec = updated.derived_artifacts.refined_specification
        logger.info(f"Session {session.id}: revision {len(artifacts.revisions)} recorded")
        return StageOutcome(
            stage=Stage.REFINING,
            session=updated,
            content=f"Revision recorded: {revision_request}\n\nRefined Specification\n\n{spec}",
            data={
                "refinedSpecification": spec,
                "revisionRequest": revision_request,
                "revisions": updated.derived_artifacts.revisions,
            },
        )

    def _with_revision(self, session: Session, revision_request: str) -> DerivedArtifacts:
        """Artifacts with the revision recorded, spec regenerated and documents cleared."""
        revisions = [*session.derived_artifacts.revisions, revision_request]
        spec = content.generate_refined_specification(session.subject, session.answers, revisions)
        return session.derived_artifacts.model_copy(
            update={"revisions": revisions, "refined_specification": spec, "documents": []}
        )

    def _review_outcome(self, session: Session, idempotent: bool = False) -> StageOutcome:
        artifacts = session.derived_artifacts
        return StageOutcome(
            stage=Stage.DOCUMENT_REVIEW,
            session=session,
            content=content.render_documents(artifacts.documents),
            data={
                "refinedSpecification": artifacts.refined_specification,
                "generatedDocuments": [d.model_dump(by_alias=True) for d in artifacts.documents],
                "approvalNeeded": list(REVIEW_DOCUMENTS),
                "acceptedApprovalTokens": sorted(ACCEPTED_APPROVAL_TOKENS),
                "testSpecifications": artifacts.test_specifications,
            },
            idempotent=idempotent,
        )

    def _handle_approval(self, session: Session, payload: Any) -> StageOutcome:
        validate_transition(session.stage, Stage.FINAL_APPROVAL)
        parsed = parse_payload(Stage.FINAL_APPROVAL, payload)

        if parsed.approval_token.strip().lower() not in ACCEPTED_APPROVAL_TOKENS:
            raise MissingInputError(
                f"Explicit approval required. Received: {parsed.approval_token!r}. "
                f"Accepted responses: {', '.join(sorted(ACCEPTED_APPROVAL_TOKENS))}",
                field_name="approvalToken",
            )

        record = ApprovalRecord(
            requirements=True,
            design=True,
            tasks=True,
            agents=True,
            overall=True,
            approval_token=parsed.approval_token,
            approved_at=self.store.now(),
        )
        updated = self.store.update(
            session.id, SessionPatch(stage=Stage.FINAL_APPROVAL, approval_record=record)
        )
        lines = ["Final Approval Received", "", "Approved documents:"]
        lines.extend(f"- {title}" for title in REVIEW_DOCUMENTS)
        return StageOutcome(
            stage=Stage.FINAL_APPROVAL,
            session=updated,
            content="\n".join(lines),
            data={
                "approvedDocuments": list(REVIEW_DOCUMENTS),
                "approvalRecord": record.model_dump(mode="json", by_alias=True),
            },
        )

    def _handle_development(self, session: Session, payload: Any) -> StageOutcome:
        validate_transition(session.stage, Stage.DEVELOPMENT)
        parsed = parse_payload(Stage.DEVELOPMENT, payload)

        artifacts = session.derived_artifacts
        plan = parsed.development_plan or content.generate_development_plan(
            session.subject,
            artifacts.project_type or content.detect_project_type(session.subject),
        )
        updated = self.store.update(
            session.id,
            SessionPatch(
                stage=Stage.DEVELOPMENT,
                derived_artifacts=artifacts.model_copy(update={"development_plan": plan}),
            ),
        )
        return StageOutcome(
            stage=Stage.DEVELOPMENT,
            session=updated,
            content=content.render_development_plan(plan),
            data={
                "developmentPlan": plan.model_dump(by_alias=True),
                "approvedDocuments": list(REVIEW_DOCUMENTS),
            },
            is_complete=True,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _current(self, session: Session | None) -> Session | None:
        """Latest copy of a session for error envelopes, if it still exists."""
        if session is None:
            return None
        try:
            return self.store.peek(session.id)
        except SessionNotFoundError:
            return None


def _raw_session_id(payload: Any) -> str | None:
    if isinstance(payload, dict):
        value = payload.get("sessionId") or payload.get("session_id")
        return value if isinstance(value, str) else None
    return None
