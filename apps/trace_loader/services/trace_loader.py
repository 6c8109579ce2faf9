"""
Session-by-session loader: Scylla tracing tables -> OpenTelemetry spans.

For every session:
  fetch events -> build span graph -> start root span -> materialize spans
  (parents first) -> name/start them -> replay annotations and finish
  (children first) -> finish root span.

Failures are contained to the session that raised them. Only errors coming
out of the record source (the cluster going away) abort a run.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from prometheus_client import Counter, Histogram

from ..backend.base import TracingBackend
from ..config import Settings, settings as default_settings
from ..errors import MalformedGraphError, MaterializationError
from ..models.span_models import (
    LoadSummary,
    SessionResult,
    SessionStatus,
    SpanTree,
)
from ..models.trace_models import TraceEvent, TraceSession
from ..sources.base import RecordSource
from .annotation_replayer import replay_annotations
from .graph_builder import build_span_graph, event_timestamp
from .session_tracer import (
    SessionContext,
    SessionRegistry,
    SessionTracer,
    session_end_timestamp,
)
from .span_materializer import finish_partial, materialize_spans

logger = logging.getLogger("traceloader.loader")

SCYLLA_SPAN_ID_TAG = "db.scylla.span_id"

# --------------------------------------------------------------------------
# Prometheus metrics (Prometheus Python client)
# --------------------------------------------------------------------------

TRACE_LOADER_SESSIONS_TOTAL = Counter(
    "trace_loader_sessions_total",
    "Sessions processed by the trace loader",
    ["status"],  # completed | malformed | failed
)

TRACE_LOADER_SPANS_TOTAL = Counter(
    "trace_loader_spans_total",
    "Spans emitted to the tracing backend, session root spans included",
)

TRACE_LOADER_ANNOTATIONS_TOTAL = Counter(
    "trace_loader_annotations_total",
    "Event annotations replayed onto spans",
    ["result"],  # replayed | dropped
)

TRACE_LOADER_SESSION_DURATION_SECONDS = Histogram(
    "trace_loader_session_duration_seconds",
    "Wall time spent loading one session",
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10),
)


class TraceLoader:
    """
    Pulls finished sessions from a RecordSource and emits their traces.

    Modes:
      - hierarchical: one span per Scylla span, nested under the session
        root span, events replayed as annotations on their own span
      - flat: only the session root span, carrying every event
    """

    def __init__(
        self,
        source: RecordSource,
        backend: TracingBackend,
        settings: Optional[Settings] = None,
        registry: Optional[SessionRegistry] = None,
    ) -> None:
        self.source = source
        self.backend = backend
        self.settings = settings or default_settings
        self.tracer = SessionTracer(
            backend,
            registry=registry,
            context_key=self.settings.CONTEXT_KEY,
        )

    @property
    def registry(self) -> SessionRegistry:
        return self.tracer.registry

    # ----------------------------------------------------------------------
    # Run
    # ----------------------------------------------------------------------
    def run(self, limit: Optional[int] = None) -> LoadSummary:
        if limit is None:
            limit = self.settings.SESSION_LIMIT

        sessions = self.source.fetch_sessions(limit)
        logger.info(
            "Loading %d sessions (mode=%s)",
            len(sessions),
            self.settings.MODE,
        )

        summary = LoadSummary()
        for session in sessions:
            summary.add(self.process_session(session))

        logger.info(
            "Load finished: total=%d completed=%d malformed=%d failed=%d spans=%d",
            summary.sessions_total,
            summary.sessions_completed,
            summary.sessions_malformed,
            summary.sessions_failed,
            summary.spans_total,
        )
        return summary

    def process_session(self, session: TraceSession) -> SessionResult:
        start_time = time.time()
        try:
            # Source errors are not contained: they propagate out of run().
            events = self.source.fetch_events(session.session_id)

            if self.settings.flat_mode:
                result = self._load_flat(session, events)
            else:
                result = self._load_hierarchical(session, events)
        finally:
            TRACE_LOADER_SESSION_DURATION_SECONDS.observe(time.time() - start_time)

        TRACE_LOADER_SESSIONS_TOTAL.labels(status=result.status.value).inc()
        TRACE_LOADER_SPANS_TOTAL.inc(result.span_count)
        TRACE_LOADER_ANNOTATIONS_TOTAL.labels(result="replayed").inc(result.annotation_count)
        TRACE_LOADER_ANNOTATIONS_TOTAL.labels(result="dropped").inc(result.dropped_annotations)

        if result.status == SessionStatus.COMPLETED:
            logger.info(
                "Session loaded: session=%s trace_id=%s spans=%d annotations=%d dropped=%d",
                session.session_id,
                result.trace_id,
                result.span_count,
                result.annotation_count,
                result.dropped_annotations,
            )
        return result

    # ----------------------------------------------------------------------
    # Hierarchical mode
    # ----------------------------------------------------------------------
    def _load_hierarchical(
        self,
        session: TraceSession,
        events: List[TraceEvent],
    ) -> SessionResult:
        started_at = session.started_at_micros

        try:
            tree = build_span_graph(events, started_at)
        except MalformedGraphError as exc:
            return self._malformed(session, exc)

        ctx: Optional[SessionContext] = None
        handles: Dict[int, Any] = {}
        try:
            ctx = self.tracer.start(session)
            handles = materialize_spans(tree, self.backend, ctx.root_handle)
            started = self._start_spans(session, tree, handles)

            self.tracer.begin_annotating(ctx)
            replay = replay_annotations(
                events,
                tree,
                handles,
                self.backend,
                session_started_at=started_at,
                session_handle=ctx.root_handle,
            )
            trace_id = self.tracer.finish(ctx, session_end_timestamp(tree, started_at))
        except Exception as exc:  # noqa: BLE001
            if isinstance(exc, MaterializationError):
                handles = exc.partial_handles
            return self._failed(session, exc, ctx, tree, handles)

        return SessionResult(
            session_id=session.session_id,
            status=SessionStatus.COMPLETED,
            trace_id=trace_id,
            span_count=started + 1,
            annotation_count=replay.annotated,
            dropped_annotations=replay.dropped,
        )

    def _start_spans(
        self,
        session: TraceSession,
        tree: SpanTree,
        handles: Dict[int, Any],
    ) -> int:
        # Creation order is parent-first, so each parent is started before
        # any of its children.
        started = 0
        for span_id, handle in handles.items():
            node = tree[span_id]
            if node.is_placeholder:
                continue
            self.backend.name_span(handle, session.span_name)
            self.backend.tag_span(handle, SCYLLA_SPAN_ID_TAG, span_id)
            if session.client:
                self.backend.set_remote_endpoint(handle, session.client)
            self.backend.start_span(handle, int(node.start_timestamp))
            started += 1
        return started

    # ----------------------------------------------------------------------
    # Flat mode
    # ----------------------------------------------------------------------
    def _load_flat(
        self,
        session: TraceSession,
        events: List[TraceEvent],
    ) -> SessionResult:
        started_at = session.started_at_micros

        try:
            timed: List[Tuple[int, int, TraceEvent]] = sorted(
                (event_timestamp(event, started_at), position, event)
                for position, event in enumerate(events)
            )
        except MalformedGraphError as exc:
            return self._malformed(session, exc)

        ctx: Optional[SessionContext] = None
        try:
            ctx = self.tracer.start(session)
            self.tracer.begin_annotating(ctx)
            end = started_at
            for ts, _, event in timed:
                self.tracer.annotate(ctx, ts, event.activity)
                end = max(end, ts + 1)
            trace_id = self.tracer.finish(ctx, end)
        except Exception as exc:  # noqa: BLE001
            return self._failed(session, exc, ctx, None, {})

        return SessionResult(
            session_id=session.session_id,
            status=SessionStatus.COMPLETED,
            trace_id=trace_id,
            span_count=1,
            annotation_count=len(timed),
        )

    # ----------------------------------------------------------------------
    # Failure paths
    # ----------------------------------------------------------------------
    def _malformed(self, session: TraceSession, exc: MalformedGraphError) -> SessionResult:
        logger.warning(
            "Session skipped (%s): session=%s error=%s",
            exc.kind,
            session.session_id,
            exc,
        )
        return SessionResult(
            session_id=session.session_id,
            status=SessionStatus.MALFORMED,
            error=str(exc),
        )

    def _failed(
        self,
        session: TraceSession,
        exc: Exception,
        ctx: Optional[SessionContext],
        tree: Optional[SpanTree],
        handles: Dict[int, Any],
    ) -> SessionResult:
        kind = getattr(exc, "kind", type(exc).__name__)
        logger.error(
            "Session failed (%s): session=%s error=%s",
            kind,
            session.session_id,
            exc,
        )

        if tree is not None and handles:
            finish_partial(handles, tree, self.backend)
        if ctx is not None:
            self.tracer.fail(ctx, session_end_timestamp(tree, session.started_at_micros))

        return SessionResult(
            session_id=session.session_id,
            status=SessionStatus.FAILED,
            error=f"{kind}: {exc}",
        )
