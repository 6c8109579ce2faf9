"""
OpenTelemetry implementation of the loader's tracing backend.

OpenTelemetry creates and starts a span in one call, while the loader wants
to allocate every handle first (parent before child) and name/start them
afterwards. OtelSpanHandle bridges the two: it buffers name, attributes and
early annotations until start_span, and until then exposes a pre-allocated
span context so handles that never start (placeholder spans) can still parent
other spans.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.trace.id_generator import RandomIdGenerator
from opentelemetry.trace import (
    NonRecordingSpan,
    Span,
    SpanContext,
    SpanKind,
    TraceFlags,
    format_trace_id,
    set_span_in_context,
)
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from ..errors import PropagatedContextInvalid
from .base import TracingBackend

logger = logging.getLogger("traceloader.backend.otel")

_ATTRIBUTE_TYPES = (str, bool, int, float)

Parent = Union["OtelSpanHandle", SpanContext, None]


def _micros_to_nanos(timestamp: int) -> int:
    return int(timestamp) * 1000


class OtelSpanHandle:
    def __init__(self, parent: Parent, span_id: int, trace_id: int) -> None:
        self.parent = parent
        self.name = "unnamed"
        self.attributes: Dict[str, Any] = {}
        self.span: Optional[Span] = None
        self.finished = False
        self._span_id = span_id
        self._trace_id = trace_id
        self._pending_events: List[Tuple[int, str]] = []

    @property
    def started(self) -> bool:
        return self.span is not None

    @property
    def span_context(self) -> SpanContext:
        if self.span is not None:
            return self.span.get_span_context()
        return SpanContext(
            trace_id=self._resolve_trace_id(),
            span_id=self._span_id,
            is_remote=False,
            trace_flags=TraceFlags(TraceFlags.SAMPLED),
        )

    def _resolve_trace_id(self) -> int:
        # Follow the parent: it may have started (and been given its real
        # trace id) after this handle was allocated.
        if isinstance(self.parent, OtelSpanHandle):
            return self.parent.span_context.trace_id
        if isinstance(self.parent, SpanContext):
            return self.parent.trace_id
        return self._trace_id

    def parent_context(self) -> Context:
        if self.parent is None:
            # Empty context: start a new trace regardless of what is active.
            return Context()
        if isinstance(self.parent, OtelSpanHandle):
            if self.parent.span is not None:
                return set_span_in_context(self.parent.span, Context())
            return set_span_in_context(NonRecordingSpan(self.parent.span_context), Context())
        return set_span_in_context(NonRecordingSpan(self.parent), Context())

    def __repr__(self) -> str:
        return (
            f"OtelSpanHandle(name={self.name!r}, started={self.started}, "
            f"finished={self.finished})"
        )


class OtelTracingBackend(TracingBackend):
    """
    Emits reconstructed spans through an OpenTelemetry tracer.

    Every span is SERVER kind, matching how Scylla itself reports the
    requests it served.
    """

    def __init__(
        self,
        tracer_provider: Optional[trace.TracerProvider] = None,
        instrumentation_name: str = "apps.trace_loader",
    ) -> None:
        if tracer_provider is None:
            self.tracer = trace.get_tracer(instrumentation_name)
        else:
            self.tracer = tracer_provider.get_tracer(instrumentation_name)
        self._ids = RandomIdGenerator()
        self._propagator = TraceContextTextMapPropagator()

    # ------------------------------------------------------------------
    # Handle allocation
    # ------------------------------------------------------------------
    def _new_handle(self, parent: Parent) -> OtelSpanHandle:
        return OtelSpanHandle(
            parent=parent,
            span_id=self._ids.generate_span_id(),
            trace_id=self._ids.generate_trace_id(),
        )

    def new_root_span(self, continued: Optional[Any] = None) -> OtelSpanHandle:
        if continued is not None and not isinstance(continued, (OtelSpanHandle, SpanContext)):
            raise TypeError(f"Cannot continue trace from {type(continued).__name__}")
        return self._new_handle(continued)

    def new_child_span(self, parent: Any) -> OtelSpanHandle:
        if not isinstance(parent, OtelSpanHandle):
            raise TypeError(f"Parent must be an OtelSpanHandle, got {type(parent).__name__}")
        return self._new_handle(parent)

    # ------------------------------------------------------------------
    # Decoration
    # ------------------------------------------------------------------
    def name_span(self, handle: OtelSpanHandle, name: str) -> None:
        handle.name = name
        if handle.span is not None:
            handle.span.update_name(name)

    def tag_span(self, handle: OtelSpanHandle, key: str, value: Any) -> None:
        if value is None:
            return
        if not isinstance(value, _ATTRIBUTE_TYPES):
            value = str(value)
        handle.attributes[key] = value
        if handle.span is not None:
            handle.span.set_attribute(key, value)

    def set_remote_endpoint(self, handle: OtelSpanHandle, address: str) -> None:
        self.tag_span(handle, "net.peer.ip", address)
        self.tag_span(handle, "net.peer.port", 0)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start_span(self, handle: OtelSpanHandle, timestamp: int) -> None:
        if handle.span is not None:
            logger.debug("Span %s already started", handle.name)
            return

        handle.span = self.tracer.start_span(
            handle.name,
            context=handle.parent_context(),
            kind=SpanKind.SERVER,
            attributes=dict(handle.attributes),
            start_time=_micros_to_nanos(timestamp),
        )

        pending, handle._pending_events = handle._pending_events, []
        for ts, text in pending:
            handle.span.add_event(text, timestamp=_micros_to_nanos(ts))

    def annotate_span(self, handle: OtelSpanHandle, timestamp: int, text: str) -> None:
        if handle.span is None:
            handle._pending_events.append((timestamp, text))
            return
        handle.span.add_event(text, timestamp=_micros_to_nanos(timestamp))

    def finish_span(self, handle: OtelSpanHandle, timestamp: int) -> None:
        if handle.span is None or handle.finished:
            return
        handle.span.end(end_time=_micros_to_nanos(timestamp))
        handle.finished = True

    # ------------------------------------------------------------------
    # Propagation / reporting
    # ------------------------------------------------------------------
    def decode_propagated_context(self, raw: str) -> SpanContext:
        ctx = self._propagator.extract(carrier={"traceparent": raw})
        span_context = trace.get_current_span(ctx).get_span_context()
        if not span_context.is_valid:
            raise PropagatedContextInvalid(f"Unusable traceparent: {raw!r}")
        return span_context

    def trace_id(self, handle: OtelSpanHandle) -> str:
        return format_trace_id(handle.span_context.trace_id)
