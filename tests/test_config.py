"""Tests for runtime configuration loading.

Covers:
- Defaults match the documented session lifecycle limits
- YAML file values and environment overrides
- Validation of out-of-range values
"""

from pathlib import Path

import pytest

from kat_planner.config import (
    ACCEPTED_APPROVAL_TOKENS,
    DEFAULT_SESSION_FILE,
    ErrorCategory,
    PlannerConfig,
    Stage,
    load_config,
)


class TestEnums:
    def test_stage_values_in_workflow_order(self):
        """Stage.values lists the stages in workflow order."""
        assert Stage.values() == [
            "questioning",
            "refining",
            "document_review",
            "final_approval",
            "development",
        ]

    def test_error_category_values(self):
        """ErrorCategory exposes the wire names of each category."""
        assert "InvalidTransition" in ErrorCategory.values()
        assert "NotFound" in ErrorCategory.values()

    def test_approval_tokens_are_normalized(self):
        """Tokens are compared after trim + lowercase, so the set holds lowercase only."""
        assert all(token == token.strip().lower() for token in ACCEPTED_APPROVAL_TOKENS)
        assert "yes" in ACCEPTED_APPROVAL_TOKENS
        assert "maybe" not in ACCEPTED_APPROVAL_TOKENS


class TestPlannerConfig:
    def test_defaults(self):
        """PlannerConfig defaults match the documented lifecycle constants."""
        config = PlannerConfig()
        assert config.session_file == DEFAULT_SESSION_FILE
        assert config.session_timeout_seconds == 30 * 60
        assert config.reap_interval_seconds == 5 * 60
        assert config.max_sessions == 1000
        assert config.eviction_fraction == 0.2

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_sessions": 0},
            {"session_timeout_seconds": 0},
            {"reap_interval_seconds": -1},
            {"eviction_fraction": 0},
            {"eviction_fraction": 1.5},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        """Out-of-range settings raise ValueError."""
        with pytest.raises(ValueError):
            PlannerConfig(**kwargs)

    def test_from_dict_ignores_unknown_keys(self):
        """from_dict coerces known keys and drops the rest."""
        config = PlannerConfig.from_dict({"max_sessions": "5", "colour": "blue"})
        assert config.max_sessions == 5

    def test_from_yaml(self, tmp_path):
        """from_yaml reads settings and expands the session file path."""
        path = tmp_path / "planner.yaml"
        path.write_text(
            "session_file: ~/custom-sessions.json\nsession_timeout_seconds: 60\nlog_level: debug\n"
        )
        config = PlannerConfig.from_yaml(path)
        assert config.session_file == Path("~/custom-sessions.json").expanduser()
        assert config.session_timeout_seconds == 60.0
        assert config.log_level == "DEBUG"

    def test_from_yaml_rejects_non_mapping(self, tmp_path):
        """A YAML file that is not a mapping is rejected."""
        path = tmp_path / "planner.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            PlannerConfig.from_yaml(path)

    def test_empty_yaml_gives_defaults(self, tmp_path):
        """An empty YAML file yields the default config."""
        path = tmp_path / "planner.yaml"
        path.write_text("")
        assert PlannerConfig.from_yaml(path) == PlannerConfig()


class TestLoadConfig:
    def test_env_overrides_file(self, tmp_path):
        """Environment variables win over values from the file."""
        path = tmp_path / "planner.yaml"
        path.write_text("max_sessions: 10\n")
        config = load_config(path, environ={"KAT_PLANNER_MAX_SESSIONS": "20"})
        assert config.max_sessions == 20

    def test_env_session_file(self, tmp_path):
        """KAT_PLANNER_SESSION_FILE sets the session file path."""
        target = tmp_path / "s.json"
        config = load_config(environ={"KAT_PLANNER_SESSION_FILE": str(target)})
        assert config.session_file == target

    def test_invalid_env_value_keeps_default(self):
        """An unparseable environment value leaves the default in place."""
        config = load_config(environ={"KAT_PLANNER_SESSION_TIMEOUT": "soon"})
        assert config.session_timeout_seconds == 30 * 60

    def test_empty_env_value_ignored(self):
        """Empty environment variables are ignored."""
        config = load_config(environ={"LOG_LEVEL": ""})
        assert config.log_level == "INFO"
