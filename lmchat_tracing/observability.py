"""
Lightweight observability utilities.

Two concerns live here:

- ``trace_span``: structured latency records for sink and catalog calls,
  written to the ``lmchat_tracing.trace`` logger.
- ``log_ai_event``: best-effort emission of AI events to the host's event
  stream. Event payloads are converted to JSON-compatible values first so
  that LangChain messages and generations reach the sink as plain data.

Neither helper may break a model invocation. ``trace_span`` never swallows
the wrapped block's exception; ``log_ai_event`` never raises at all.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Literal, Protocol

from pydantic_core import to_jsonable_python

logger = logging.getLogger("lmchat_tracing.trace")

AiEvent = Literal["ai-llm-generated-output", "ai-llm-errored"]


class AiEventSink(Protocol):
    """Anything that accepts AI events (the host execution log, a test double)."""

    def log_ai_event(self, event: AiEvent, data: Any | None = None) -> None: ...


@contextmanager
def trace_span(name: str, **metadata):
    """
    Measure execution duration of an instrumentation call.

    Example log:
    [TRACE] add_input_data duration_ms=0.42 run_id=3f2a...

    Guarantees
    ----------
    - Always logs completion (even if exception occurs)
    - Never suppresses exceptions
    - Produces structured key=value logs
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - start) * 1000

        meta = " ".join(f"{k}={v}" for k, v in metadata.items())
        logger.debug("[TRACE] %s duration_ms=%.2f %s", name, duration_ms, meta)


def log_ai_event(sink: AiEventSink, event: AiEvent, data: dict[str, Any] | None = None) -> None:
    """Emit an AI event, logging instead of raising when the sink fails."""
    try:
        payload = to_jsonable_python(data, fallback=str) if data is not None else None
        sink.log_ai_event(event, payload)
    except Exception as e:
        logger.warning(f"Error logging AI event {event}: {e}")
