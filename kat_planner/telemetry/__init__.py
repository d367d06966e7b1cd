"""Logging and tracing for kat-planner."""

from .config import setup_logging
from .spans import get_tracer, record_outcome, stage_span

__all__ = ["setup_logging", "get_tracer", "record_outcome", "stage_span"]
