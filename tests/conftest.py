"""Shared test fixtures and helpers.

Centralizes the store/orchestrator boilerplate used across test files.
"""

from datetime import UTC, datetime, timedelta

import pytest

from kat_planner.session.session_store import SessionStore
from kat_planner.workflow.orchestrator import WorkflowOrchestrator


class FakeClock:
    """Controllable clock for deterministic expiry and eviction tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 10, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_file(tmp_path):
    return tmp_path / "sessions.json"


@pytest.fixture
def store(session_file, clock):
    """SessionStore backed by a temporary file and a fake clock."""
    return SessionStore(session_file, clock=clock)


@pytest.fixture
def orchestrator(store):
    return WorkflowOrchestrator(store)


def start_session(orchestrator, subject: str = "build a CLI tool") -> str:
    """Create a session and return its id."""
    result = orchestrator.invoke("question", {"subject": subject})
    assert not result.get("error"), result
    return result["structuredContent"]["sessionId"]


def advance_to(orchestrator, stage: str, subject: str = "build a CLI tool") -> str:
    """Create a session and walk it forward until it reaches ``stage``."""
    steps = [
        ("refine", {"answers": {"lang": "go"}}),
        ("document_review", {}),
        ("final_approval", {"approvalToken": "yes"}),
        ("development", {}),
    ]
    session_id = start_session(orchestrator, subject)
    if stage == "questioning":
        return session_id
    for call_name, fields in steps:
        result = orchestrator.invoke(call_name, {"sessionId": session_id, **fields})
        assert not result.get("error"), result
        if result["structuredContent"]["stage"] == stage:
            return session_id
    raise ValueError(f"Unknown stage: {stage}")
