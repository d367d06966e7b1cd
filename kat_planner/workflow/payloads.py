"""Typed payloads for each stage call.

Callers send loosely-shaped JSON objects; each stage validates its payload
into one of these models before any business logic runs. Earlier client
field names (``userIdea``, ``userAnswers``, ``explicitApproval``) are accepted
as aliases.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from kat_planner.config import Stage
from kat_planner.errors import MissingInputError
from kat_planner.session.models import DevelopmentPlan


class _Payload(BaseModel):
    # Transport extras such as ``mode`` are ignored
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class QuestionPayload(_Payload):
    """Entry call: create a session for an idea."""

    subject: str = Field(min_length=1, validation_alias=AliasChoices("subject", "userIdea"))


class SessionPayload(_Payload):
    """Any call that names an existing session."""

    session_id: str = Field(min_length=1, validation_alias=AliasChoices("sessionId", "session_id"))


class RefinePayload(SessionPayload):
    """Answers to the clarifying questions.

    List answers are joined with ", "; scalars are converted to strings.
    """

    answers: dict[str, str] = Field(validation_alias=AliasChoices("answers", "userAnswers"))

    @field_validator("answers", mode="before")
    @classmethod
    def normalize_answers(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        if not value:
            raise ValueError("answers must contain at least one entry")
        normalized = {}
        for key, answer in value.items():
            if isinstance(answer, list | tuple):
                answer = ", ".join(str(item) for item in answer)
            elif answer is None:
                raise ValueError(f"answer for '{key}' must not be null")
            elif not isinstance(answer, str):
                answer = str(answer)
            normalized[str(key)] = answer
        return normalized


class ReviewPayload(SessionPayload):
    """Document review, optionally carrying a revision request."""

    revision_request: str | None = Field(
        default=None, validation_alias=AliasChoices("revisionRequest", "revision_request")
    )

    @field_validator("revision_request")
    @classmethod
    def blank_is_none(cls, value: str | None) -> str | None:
        return value or None


class ApprovalPayload(SessionPayload):
    """Final approval with the caller's approval phrase."""

    approval_token: str = Field(
        min_length=1,
        validation_alias=AliasChoices("approvalToken", "explicitApproval", "approval_token"),
    )


class DevelopmentPayload(SessionPayload):
    """Development start, optionally with a caller-supplied plan."""

    development_plan: DevelopmentPlan | None = Field(
        default=None, validation_alias=AliasChoices("developmentPlan", "development_plan")
    )


PAYLOAD_MODELS: dict[Stage, type[_Payload]] = {
    Stage.QUESTIONING: QuestionPayload,
    Stage.REFINING: RefinePayload,
    Stage.DOCUMENT_REVIEW: ReviewPayload,
    Stage.FINAL_APPROVAL: ApprovalPayload,
    Stage.DEVELOPMENT: DevelopmentPayload,
}


def describe_validation_error(error: ValidationError) -> tuple[str, str | None]:
    """Summarize a pydantic error as (message, first offending field)."""
    details = error.errors()
    if not details:
        return "Invalid payload", None
    first = details[0]
    field_name = str(first["loc"][0]) if first.get("loc") else None
    message = first.get("msg", "invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    if field_name:
        return f"Missing or invalid field '{field_name}': {message}", field_name
    return f"Invalid payload: {message}", None


def _as_mapping(payload: Any) -> dict[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise MissingInputError("Payload must be a JSON object")
    return payload


def require_session_id(payload: Any) -> str:
    """Extract the session id, raising MissingInputError if absent."""
    try:
        return SessionPayload.model_validate(_as_mapping(payload)).session_id
    except ValidationError as e:
        raise MissingInputError("Session ID required", field_name="sessionId") from e


def parse_payload(stage: Stage, payload: Any) -> _Payload:
    """Validate a raw payload into the typed variant for ``stage``.

    Raises:
        MissingInputError: If a required field is absent or malformed
    """
    try:
        return PAYLOAD_MODELS[stage].model_validate(_as_mapping(payload))
    except ValidationError as e:
        message, field_name = describe_validation_error(e)
        raise MissingInputError(message, field_name=field_name) from e
