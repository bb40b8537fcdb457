"""OpenTelemetry span for one agent step.

``open_step_span`` brackets a whole invocation. The span is ended exactly once
whichever way the block exits, and exceptions are not recorded automatically:
the step decides what the span says about a failure via ``mark_error``.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

logger = logging.getLogger(__name__)

TRACER_NAME = "agent_step"

SESSION_ID_ATTR = "session.id"
SPAN_KIND_ATTR = "span.kind"
INPUT_ATTR = "input.value"
OUTPUT_ATTR = "output.value"
METADATA_PREFIX = "metadata."
TAG_PREFIX = "tag."

_PRIMITIVES = (str, bool, int, float)


def _attr_value(value: Any) -> Any:
    if isinstance(value, _PRIMITIVES):
        return value
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    return json.dumps(value, default=str, sort_keys=True)


class StepSpan:
    """Thin annotation helper over an OpenTelemetry span."""

    def __init__(self, span: Span, session_id: str) -> None:
        self.span = span
        self.session_id = session_id
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def annotate(
        self,
        *,
        input_data: Any = None,
        output_data: Any = None,
        metadata: Mapping[str, Any] | None = None,
        tags: Mapping[str, Any] | None = None,
    ) -> None:
        """Flatten values into span attributes. ``None`` values are skipped."""
        if self._ended:
            logger.debug("Ignoring annotation on ended span %s", self.session_id)
            return
        attributes: dict[str, Any] = {}
        if input_data is not None:
            attributes[INPUT_ATTR] = _attr_value(input_data)
        if output_data is not None:
            attributes[OUTPUT_ATTR] = _attr_value(output_data)
        for key, value in (metadata or {}).items():
            if value is not None:
                attributes[f"{METADATA_PREFIX}{key}"] = _attr_value(value)
        for key, value in (tags or {}).items():
            if value is not None:
                attributes[f"{TAG_PREFIX}{key}"] = _attr_value(value)
        if attributes:
            self.span.set_attributes(attributes)

    def mark_error(self, message: str, error_type: str) -> None:
        self.annotate(output_data=message, tags={"error": "1", "error.type": error_type})
        self.span.set_status(Status(StatusCode.ERROR, message))

    def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self.span.end()


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME)


@contextmanager
def open_step_span(
    name: str,
    session_id: str,
    *,
    tracer: trace.Tracer | None = None,
) -> Iterator[StepSpan]:
    """Start the step span and guarantee it is ended exactly once."""
    tracer = tracer or get_tracer()
    with tracer.start_as_current_span(
        name,
        attributes={SESSION_ID_ATTR: session_id, SPAN_KIND_ATTR: "agent"},
        end_on_exit=False,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        step_span = StepSpan(span, session_id)
        try:
            yield step_span
        finally:
            step_span.end()
