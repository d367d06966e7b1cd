"""OpenTelemetry spans around stage handling.

Every orchestrator call runs inside a ``stage_span``. Without an SDK
configured by the host process the OpenTelemetry API hands out non-recording
spans, so tracing costs nothing by default.

Span Hierarchy:
    stage_span (per call)
    └── any spans created by the host while the call runs
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import StatusCode

from kat_planner.errors import WorkflowError

logger = logging.getLogger(__name__)

_tracer: trace.Tracer | None = None


def get_tracer() -> trace.Tracer:
    """Get the tracer used for planner spans."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer("kat_planner.workflow")
    return _tracer


@contextmanager
def stage_span(
    stage_name: str,
    session_id: str | None = None,
    **attributes: Any,
) -> Generator[trace.Span, None, None]:
    """Create a span for one stage call.

    Typed workflow errors are expected outcomes: they are recorded as a
    ``stage.error_category`` attribute and an error status, then re-raised.

    Args:
        stage_name: Call name or stage value the caller requested
        session_id: Session the call refers to, when known
        **attributes: Additional span attributes

    Example:
        with stage_span("refine", session_id) as span:
            span.set_attribute("stage.answers", 3)
    """
    span_attributes: dict[str, Any] = {"stage.name": stage_name}
    if session_id:
        span_attributes["session.id"] = session_id
    span_attributes.update(attributes)

    with get_tracer().start_as_current_span(
        name=f"stage:{stage_name}",
        attributes=span_attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except WorkflowError as e:
            span.set_attribute("stage.error_category", e.category.value)
            span.set_status(StatusCode.ERROR, e.message)
            raise
        except Exception as e:
            span.record_exception(e)
            span.set_status(StatusCode.ERROR, str(e))
            raise
        else:
            span.set_status(StatusCode.OK)


def record_outcome(span: trace.Span, stage: str, is_complete: bool, idempotent: bool) -> None:
    """Attach the result of a successful call to its span."""
    span.set_attribute("stage.result", stage)
    span.set_attribute("workflow.complete", is_complete)
    span.set_attribute("stage.idempotent", idempotent)
