"""Centralized configuration for kat-planner.

This module provides a single source of truth for stage names, session
lifecycle limits, and the runtime configuration loaded at bootstrap.

Design Principles:
- All timeout, capacity, and eviction settings in one place
- Enums for type-safe stage and error-category values
- Runtime config read from an optional YAML file, overridden by environment
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# =============================================================================
# Enums for Type Safety
# =============================================================================


class Stage(Enum):
    """Workflow stages a session can occupy."""

    QUESTIONING = "questioning"
    REFINING = "refining"
    DOCUMENT_REVIEW = "document_review"
    FINAL_APPROVAL = "final_approval"
    DEVELOPMENT = "development"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid stage values as strings."""
        return [stage.value for stage in cls]


class ErrorCategory(Enum):
    """Categories surfaced to callers in error envelopes."""

    NOT_FOUND = "NotFound"
    INVALID_TRANSITION = "InvalidTransition"
    MISSING_INPUT = "MissingInput"
    CAPACITY_EXCEEDED = "CapacityExceeded"
    STORAGE_CORRUPT = "StorageCorrupt"
    STORAGE_UNAVAILABLE = "StorageUnavailable"
    INTERNAL = "InternalError"

    @classmethod
    def values(cls) -> list[str]:
        """Return all category values as strings."""
        return [category.value for category in cls]


# =============================================================================
# Session Lifecycle Defaults
# =============================================================================

# Sessions idle longer than this are removed by the reaper
SESSION_TIMEOUT_SECONDS = 30 * 60

# How often the reaper sweeps the session table
REAP_INTERVAL_SECONDS = 5 * 60

# Ceiling on live sessions
MAX_SESSIONS = 1000

# Share of the table evicted (oldest activity first) when at capacity
EVICTION_FRACTION = 0.2

# Sessions active more recently than this are never evicted
EVICTION_MIN_IDLE_SECONDS = 0.0

DEFAULT_SESSION_FILE = Path.home() / ".kat-planner-sessions.json"

SESSION_ID_PREFIX = "kat_"


# =============================================================================
# Approval Configuration
# =============================================================================

# Closed set of approval tokens, compared after trim + lowercase
ACCEPTED_APPROVAL_TOKENS = frozenset(
    {
        "yes",
        "approved",
        "approve",
        "proceed",
        "continue",
        "ok",
        "go ahead",
        "documents look good",
        "ready for development",
    }
)

# Documents produced at review time and covered by final approval
REVIEW_DOCUMENTS = ["requirements.md", "design.md", "tasks.md", "AGENTS.md"]


# =============================================================================
# Runtime Configuration
# =============================================================================

# Environment variable -> PlannerConfig field
_ENV_OVERRIDES: dict[str, str] = {
    "KAT_PLANNER_SESSION_FILE": "session_file",
    "KAT_PLANNER_SESSION_TIMEOUT": "session_timeout_seconds",
    "KAT_PLANNER_REAP_INTERVAL": "reap_interval_seconds",
    "KAT_PLANNER_MAX_SESSIONS": "max_sessions",
    "KAT_PLANNER_EVICTION_FRACTION": "eviction_fraction",
    "KAT_PLANNER_EVICTION_MIN_IDLE": "eviction_min_idle_seconds",
    "LOG_LEVEL": "log_level",
}


@dataclass(frozen=True)
class PlannerConfig:
    """Runtime configuration for the planner server.

    Attributes:
        session_file: Path of the JSON file holding every session record
        session_timeout_seconds: Idle time after which a session expires
        reap_interval_seconds: Interval between reaper sweeps
        max_sessions: Ceiling on live sessions
        eviction_fraction: Share of the table evicted when at capacity
        eviction_min_idle_seconds: Minimum idle time before a session can be evicted
        log_level: Root log level name
        server_name: Name advertised by the MCP server
    """

    session_file: Path = field(default_factory=lambda: DEFAULT_SESSION_FILE)
    session_timeout_seconds: float = SESSION_TIMEOUT_SECONDS
    reap_interval_seconds: float = REAP_INTERVAL_SECONDS
    max_sessions: int = MAX_SESSIONS
    eviction_fraction: float = EVICTION_FRACTION
    eviction_min_idle_seconds: float = EVICTION_MIN_IDLE_SECONDS
    log_level: str = "INFO"
    server_name: str = "kat-planner"

    def __post_init__(self) -> None:
        if self.max_sessions < 1:
            raise ValueError(f"max_sessions must be at least 1, got: {self.max_sessions}")
        if self.session_timeout_seconds <= 0:
            raise ValueError(
                f"session_timeout_seconds must be positive, got: {self.session_timeout_seconds}"
            )
        if self.reap_interval_seconds <= 0:
            raise ValueError(
                f"reap_interval_seconds must be positive, got: {self.reap_interval_seconds}"
            )
        if not 0 < self.eviction_fraction <= 1:
            raise ValueError(
                f"eviction_fraction must be in (0, 1], got: {self.eviction_fraction}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlannerConfig":
        """Build a config from a plain mapping, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key '{key}'")
                continue
            kwargs[key] = _coerce(key, value)
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PlannerConfig":
        """Load config from a YAML file.

        Args:
            path: Path to the YAML config file

        Returns:
            PlannerConfig with values from the file and defaults elsewhere

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file does not contain a mapping
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    def with_env_overrides(self, environ: dict[str, str] | None = None) -> "PlannerConfig":
        """Return a copy with environment variable overrides applied."""
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            raw = env.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                overrides[field_name] = _coerce(field_name, raw)
            except ValueError:
                logger.warning(f"Invalid value for {env_name}: {raw!r}, keeping default")
        return replace(self, **overrides)


def _coerce(field_name: str, value: Any) -> Any:
    """Convert a raw config value to the type of the named field."""
    if field_name == "session_file":
        return Path(value).expanduser()
    if field_name == "max_sessions":
        return int(value)
    if field_name == "log_level":
        return str(value).upper()
    if field_name == "server_name":
        return str(value)
    return float(value)


def load_config(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> PlannerConfig:
    """Load runtime configuration.

    Reads the YAML file when given, then applies environment overrides.

    Args:
        path: Optional YAML config file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Fully resolved PlannerConfig
    """
    config = PlannerConfig.from_yaml(path) if path else PlannerConfig()
    return config.with_env_overrides(environ)
