"""Tests for logging setup and stage spans."""

import io
import logging

import pytest

from kat_planner.errors import MissingInputError
from kat_planner.telemetry.config import setup_logging
from kat_planner.telemetry.spans import stage_span


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    def test_single_handler_with_format(self, restore_root_logger):
        """setup_logging installs one handler with the expected format."""
        stream = io.StringIO()
        setup_logging("debug", stream=stream)
        setup_logging("debug", stream=stream)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG

        logging.getLogger("kat_planner.test").info("hello")
        assert "| INFO     | kat_planner.test | hello" in stream.getvalue()

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        """An unknown level name falls back to INFO."""
        setup_logging("chatty", stream=io.StringIO())
        assert logging.getLogger().level == logging.INFO


class TestStageSpan:
    def test_span_passes_through_result(self):
        """stage_span yields a span that accepts attributes."""
        with stage_span("refine", "kat_1") as span:
            span.set_attribute("stage.answers", 1)

    def test_workflow_errors_reraised(self):
        """stage_span re-raises workflow errors."""
        with pytest.raises(MissingInputError):
            with stage_span("refine", "kat_1"):
                raise MissingInputError("answers required")

    def test_unexpected_errors_reraised(self):
        """stage_span re-raises unexpected errors."""
        with pytest.raises(RuntimeError):
            with stage_span("question"):
                raise RuntimeError("boom")
