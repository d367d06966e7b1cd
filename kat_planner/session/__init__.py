"""Session persistence: records, the durable store, and the expiry reaper."""

from .models import (
    ApprovalRecord,
    DerivedArtifacts,
    DevelopmentPlan,
    GeneratedDocument,
    Session,
    SessionPatch,
)
from .reaper import SessionReaper
from .session_store import LoadReport, SessionStore, stage_counts

__all__ = [
    "ApprovalRecord",
    "DerivedArtifacts",
    "DevelopmentPlan",
    "GeneratedDocument",
    "LoadReport",
    "Session",
    "SessionPatch",
    "SessionReaper",
    "SessionStore",
    "stage_counts",
]
