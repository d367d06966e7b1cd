"""Error taxonomy for the planner workflow.

The session store raises these; the orchestrator catches them at its boundary
and turns them into error envelopes, so none of them reach the transport.
"""

from kat_planner.config import ErrorCategory, Stage


class WorkflowError(Exception):
    """Base class for all typed workflow errors."""

    category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SessionNotFoundError(WorkflowError):
    """Referenced session does not exist, has expired, or was evicted."""

    category = ErrorCategory.NOT_FOUND

    def __init__(self, session_id: str):
        super().__init__(f"Invalid or expired session ID: {session_id}")
        self.session_id = session_id


class InvalidTransitionError(WorkflowError):
    """Requested stage is not reachable from the session's current stage."""

    category = ErrorCategory.INVALID_TRANSITION

    def __init__(self, current: Stage, attempted: Stage, reason: str = ""):
        message = (
            f"Invalid state transition. Current state: {current.value}. "
            f"Attempted: {current.value} -> {attempted.value}"
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.current = current
        self.attempted = attempted


class MissingInputError(WorkflowError):
    """A required stage-specific field is absent or malformed."""

    category = ErrorCategory.MISSING_INPUT

    def __init__(self, message: str, field_name: str | None = None):
        super().__init__(message)
        self.field_name = field_name


class CapacityExceededError(WorkflowError):
    """Session creation failed because the table is full after eviction."""

    category = ErrorCategory.CAPACITY_EXCEEDED

    def __init__(self, capacity: int):
        super().__init__(
            f"Session limit reached ({capacity} live sessions) and no session could be evicted"
        )
        self.capacity = capacity


class StorageCorruptError(WorkflowError):
    """The persisted session file could not be parsed."""

    category = ErrorCategory.STORAGE_CORRUPT


class StorageUnavailableError(WorkflowError):
    """The storage location could not be acquired or written."""

    category = ErrorCategory.STORAGE_UNAVAILABLE
