"""Durable session storage for the planning workflow.

The store owns the in-memory session table and the single JSON file that
backs it. Every mutation is serialized through one lock and written through
to disk before the call returns, using a temp-file + ``os.replace`` swap so a
crash can never leave a half-written file behind.

File layout (``~/.kat-planner-sessions.json`` by default):

    [
      {
        "id": "kat_3f2b...",
        "stage": "refining",
        "subject": "build a CLI tool",
        "createdAt": "2026-01-15T10:00:00Z",
        "lastActivityAt": "2026-01-15T10:04:12Z",
        "answers": {"lang": "go"},
        "derivedArtifacts": {...},
        "approvalRecord": null
      },
      ...
    ]
"""

import json
import logging
import math
import os
import tempfile
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from kat_planner.config import (
    DEFAULT_SESSION_FILE,
    EVICTION_FRACTION,
    EVICTION_MIN_IDLE_SECONDS,
    MAX_SESSIONS,
    SESSION_ID_PREFIX,
    SESSION_TIMEOUT_SECONDS,
    PlannerConfig,
    Stage,
)
from kat_planner.errors import (
    CapacityExceededError,
    SessionNotFoundError,
    StorageCorruptError,
    StorageUnavailableError,
)
from kat_planner.session.models import DerivedArtifacts, Session, SessionPatch
from kat_planner.workflow.transitions import ENTRY_STAGE, validate_transition

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class LoadReport:
    """Outcome of the most recent load from disk."""

    loaded: int = 0
    skipped_invalid: int = 0
    expired: int = 0
    corrupt: bool = False
    file_found: bool = False


class SessionStore:
    """Keyed, durable storage for session records.

    The SessionStore handles:
    - Session creation with a capacity ceiling and least-recently-active eviction
    - Reads that touch ``last_activity_at``
    - Atomic patches that honor the stage transition graph
    - Expiry of idle sessions (``reap_expired``)
    - Load with per-record validation and corrupt-file recovery

    Args:
        session_file: Path to the JSON file holding all sessions
        max_sessions: Ceiling on live sessions
        session_timeout_seconds: Idle time after which a session expires
        eviction_fraction: Share of the table evicted when at capacity
        eviction_min_idle_seconds: Sessions idle less than this are never evicted
        clock: Callable returning the current aware datetime
    """

    def __init__(
        self,
        session_file: str | Path = DEFAULT_SESSION_FILE,
        max_sessions: int = MAX_SESSIONS,
        session_timeout_seconds: float = SESSION_TIMEOUT_SECONDS,
        eviction_fraction: float = EVICTION_FRACTION,
        eviction_min_idle_seconds: float = EVICTION_MIN_IDLE_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ):
        if max_sessions < 1:
            raise ValueError(f"max_sessions must be at least 1, got: {max_sessions}")

        self.session_file = Path(session_file).expanduser()
        self.max_sessions = max_sessions
        self.session_timeout_seconds = session_timeout_seconds
        self.eviction_fraction = eviction_fraction
        self.eviction_min_idle_seconds = eviction_min_idle_seconds
        self._clock = clock or _utc_now

        self._lock = threading.RLock()
        self._sessions: dict[str, Session] = {}
        self._storage_error: str | None = None
        self.last_load_report = LoadReport()

        self._acquire_storage()
        if self._storage_error is None:
            self._load()

    @classmethod
    def from_config(
        cls, config: PlannerConfig, clock: Callable[[], datetime] | None = None
    ) -> "SessionStore":
        """Build a store from runtime configuration."""
        return cls(
            session_file=config.session_file,
            max_sessions=config.max_sessions,
            session_timeout_seconds=config.session_timeout_seconds,
            eviction_fraction=config.eviction_fraction,
            eviction_min_idle_seconds=config.eviction_min_idle_seconds,
            clock=clock,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def storage_available(self) -> bool:
        """False when the storage location could not be acquired."""
        return self._storage_error is None

    def now(self) -> datetime:
        """Current time from the store's clock."""
        return self._clock()

    def create(self, subject: str, derived_artifacts: DerivedArtifacts | None = None) -> Session:
        """Create a new session in the entry stage.

        The session and its initial artifacts are written in a single save, so
        a failed write leaves nothing behind.

        Args:
            subject: Free-text idea supplied by the caller
            derived_artifacts: Content generated for the entry stage, if any

        Returns:
            Copy of the new session

        Raises:
            StorageUnavailableError: If the session file cannot be written
            CapacityExceededError: If no room could be made for the session
        """
        with self._lock:
            if self._storage_error is not None:
                raise StorageUnavailableError(
                    f"Session storage unavailable at {self.session_file}: {self._storage_error}"
                )

            previous = dict(self._sessions)
            if len(self._sessions) >= self.max_sessions:
                logger.warning(
                    f"Session limit reached ({len(self._sessions)}/{self.max_sessions}), "
                    "attempting cleanup"
                )
                self._make_room()
                if len(self._sessions) >= self.max_sessions:
                    self._sessions = previous
                    logger.error("Session creation failed: limit still reached after cleanup")
                    raise CapacityExceededError(self.max_sessions)

            now = self._clock()
            session = Session(
                id=self._new_session_id(),
                stage=ENTRY_STAGE,
                subject=subject,
                created_at=now,
                last_activity_at=now,
                derived_artifacts=(
                    derived_artifacts.model_copy(deep=True)
                    if derived_artifacts is not None
                    else DerivedArtifacts()
                ),
            )
            self._sessions[session.id] = session
            self._persist_or_rollback(previous)

            logger.info(f"Session created: {session.id}")
            return session.model_copy(deep=True)

    def get(self, session_id: str) -> Session:
        """Fetch a session and record the access as activity.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        with self._lock:
            session = self._require(session_id)
            touched = session.model_copy(update={"last_activity_at": self._advance(session)})
            self._sessions[session_id] = touched
            try:
                self._save()
            except StorageUnavailableError as e:
                # The touch stays in memory; the next successful write persists it.
                logger.warning(f"Could not persist activity for {session_id}: {e}")
            return touched.model_copy(deep=True)

    def peek(self, session_id: str) -> Session:
        """Fetch a session without touching its activity timestamp.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        with self._lock:
            return self._require(session_id).model_copy(deep=True)

    def update(self, session_id: str, patch: SessionPatch) -> Session:
        """Apply a patch atomically.

        A stage change in the patch is checked against the stage held under
        the lock; if it is illegal nothing in the patch is applied.

        Args:
            session_id: Session to update
            patch: Fields to change

        Returns:
            Copy of the updated session

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidTransitionError: If the stage change is not a legal edge
            StorageUnavailableError: If the write fails (the update is rolled back)
        """
        with self._lock:
            session = self._require(session_id)
            changes: dict[str, Any] = {}

            if patch.stage is not None:
                validate_transition(session.stage, patch.stage, revision=patch.revision)
                changes["stage"] = patch.stage

            if patch.answers:
                changes["answers"] = self._append_answers(session, patch.answers)
            if patch.derived_artifacts is not None:
                changes["derived_artifacts"] = patch.derived_artifacts.model_copy(deep=True)
            if patch.approval_record is not None:
                changes["approval_record"] = patch.approval_record.model_copy(deep=True)
            changes["last_activity_at"] = self._advance(session)

            updated = session.model_copy(update=changes)
            previous = dict(self._sessions)
            self._sessions[session_id] = updated
            self._persist_or_rollback(previous)

            if "stage" in changes:
                logger.info(
                    f"Session {session_id} moved {session.stage.value} -> {updated.stage.value}"
                )
            return updated.model_copy(deep=True)

    def reap_expired(self) -> int:
        """Remove sessions idle longer than the timeout.

        Returns:
            Number of sessions removed
        """
        with self._lock:
            previous = dict(self._sessions)
            removed = self._drop_expired()
            if removed:
                self._persist_or_rollback(previous)
                logger.info(f"Cleanup complete: {removed} expired session(s) removed")
            return removed

    def count(self) -> int:
        """Number of live sessions."""
        with self._lock:
            return len(self._sessions)

    def session_ids(self) -> list[str]:
        """Ids of all live sessions."""
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    # =========================================================================
    # Lifecycle helpers (caller must hold self._lock)
    # =========================================================================

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug(f"Session not found: {session_id}")
            raise SessionNotFoundError(session_id)
        return session

    def _advance(self, session: Session) -> datetime:
        """Next activity timestamp; never earlier than the current one."""
        return max(self._clock(), session.last_activity_at)

    def _append_answers(self, session: Session, answers: dict[str, str]) -> dict[str, str]:
        merged = dict(session.answers)
        kept = []
        for key, value in answers.items():
            if key in merged and merged[key] != value:
                kept.append(key)
                continue
            merged[key] = value
        if kept:
            logger.warning(
                f"Session {session.id}: existing answers kept for {sorted(kept)}"
            )
        return merged

    def _is_expired(self, session: Session, now: datetime) -> bool:
        idle = (now - session.last_activity_at).total_seconds()
        return idle > self.session_timeout_seconds

    def _drop_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if self._is_expired(s, now)]
        for sid in expired:
            del self._sessions[sid]
            logger.info(f"Session expired: {sid}")
        return len(expired)

    def _make_room(self) -> None:
        """Drop expired sessions, then evict the least recently active."""
        self._drop_expired()
        size = len(self._sessions)
        if size < self.max_sessions:
            return

        now = self._clock()
        candidates = sorted(
            (
                s
                for s in self._sessions.values()
                if (now - s.last_activity_at).total_seconds() >= self.eviction_min_idle_seconds
            ),
            key=lambda s: s.last_activity_at,
        )
        to_remove = max(math.ceil(size * self.eviction_fraction), size - self.max_sessions + 1)
        evicted = candidates[:to_remove]
        for session in evicted:
            del self._sessions[session.id]
            logger.info(f"Session evicted: {session.id} (stage={session.stage.value})")
        logger.info(f"Forced cleanup removed {len(evicted)} of {size} session(s)")

    def _new_session_id(self) -> str:
        while True:
            session_id = f"{SESSION_ID_PREFIX}{uuid.uuid4().hex}"
            if session_id not in self._sessions:
                return session_id

    # =========================================================================
    # Persistence
    # =========================================================================

    def _acquire_storage(self) -> None:
        try:
            self.session_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._storage_error = str(e)
            logger.error(f"Session storage unavailable at {self.session_file}: {e}")

    def _persist_or_rollback(self, previous: dict[str, Session]) -> None:
        try:
            self._save()
        except StorageUnavailableError:
            self._sessions = previous
            raise

    def _save(self) -> None:
        """Write the whole table to a temp file, then swap it into place."""
        records = [s.to_record() for s in self._sessions.values()]
        data = json.dumps(records, indent=2)
        tmp_path: str | None = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=self.session_file.parent,
                prefix=f".{self.session_file.name}.",
                suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.session_file)
            tmp_path = None
        except OSError as e:
            raise StorageUnavailableError(
                f"Failed to write session file {self.session_file}: {e}"
            ) from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
        logger.debug(f"Sessions saved: {len(records)}")

    def _read_records(self) -> list[Any]:
        """Read the raw record list from disk.

        Raises:
            StorageCorruptError: If the file is unreadable or not a JSON array
        """
        try:
            entries = json.loads(self.session_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageCorruptError(f"Unreadable session file {self.session_file}: {e}") from e
        if not isinstance(entries, list):
            raise StorageCorruptError(
                f"Invalid session file format in {self.session_file}: not an array"
            )
        return entries

    def _load(self) -> None:
        """Load sessions from disk, skipping invalid records and expired sessions."""
        report = LoadReport()
        self.last_load_report = report

        if not self.session_file.exists():
            logger.info(f"No previous sessions found at {self.session_file}")
            return
        report.file_found = True

        try:
            entries = self._read_records()
        except StorageCorruptError as e:
            report.corrupt = True
            logger.error(f"Failed to load sessions, starting fresh: {e}")
            self._quarantine_corrupt_file()
            return

        sessions: dict[str, Session] = {}
        for index, entry in enumerate(entries):
            try:
                session = Session.model_validate(entry)
            except ValidationError as e:
                report.skipped_invalid += 1
                logger.warning(
                    f"Invalid session record skipped (index {index}): "
                    f"{e.error_count()} validation error(s)"
                )
                continue
            if session.id in sessions:
                report.skipped_invalid += 1
                logger.warning(f"Duplicate session id skipped: {session.id}")
                continue
            sessions[session.id] = session

        self._sessions = sessions
        report.expired = self._drop_expired()
        report.loaded = len(self._sessions)

        if report.expired or report.skipped_invalid:
            try:
                self._save()
            except StorageUnavailableError as e:
                logger.warning(f"Could not rewrite session file after load: {e}")

        logger.info(
            f"Loaded {report.loaded} sessions "
            f"(skipped {report.skipped_invalid} invalid, {report.expired} expired)"
        )

    def _quarantine_corrupt_file(self) -> None:
        """Move a corrupt file aside so later saves do not destroy it."""
        backup = self.session_file.with_name(f"{self.session_file.name}.corrupt")
        try:
            os.replace(self.session_file, backup)
            logger.warning(f"Corrupt session file preserved at {backup}")
        except OSError as e:
            logger.warning(f"Could not preserve corrupt session file: {e}")


def stage_counts(store: SessionStore) -> dict[str, int]:
    """Number of live sessions per stage (for health reporting)."""
    counts = dict.fromkeys(Stage.values(), 0)
    for session_id in store.session_ids():
        try:
            counts[store.peek(session_id).stage.value] += 1
        except SessionNotFoundError:
            continue
    return counts
