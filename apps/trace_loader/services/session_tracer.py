"""
Per-session root span lifecycle.

A SessionContext ties one Scylla tracing session to the root span that
represents the whole request. It is handed explicitly through the pipeline
(start -> annotate -> finish) rather than parked in thread-local state, and
a registry keeps track of which sessions are in flight.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..backend.base import TracingBackend
from ..errors import PropagatedContextInvalid, SessionStateError
from ..models.span_models import SessionState, SpanTree
from ..models.trace_models import TraceSession

logger = logging.getLogger("traceloader.session")

SCYLLA_REQUEST_TAG = "db.scylla.request"
SCYLLA_SESSION_TAG = "db.scylla.session_id"
SCYLLA_COORDINATOR_TAG = "db.scylla.coordinator"
DB_STATEMENT_TAG = "db.statement"


@dataclass
class SessionContext:
    session_id: UUID
    started_at: int
    root_handle: Any = None
    state: SessionState = SessionState.IDLE
    propagated: bool = False

    def transition(self, target: SessionState, allowed: List[SessionState]) -> None:
        if self.state not in allowed:
            raise SessionStateError(
                f"Session {self.session_id}: cannot go {self.state.value} -> {target.value}"
            )
        self.state = target


class SessionRegistry:
    """
    In-flight sessions keyed by id.

    Insert on start, remove on finish; a session id is only ever owned by
    one worker, so the lock only has to make insert/remove atomic.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[UUID, SessionContext] = {}

    def add(self, ctx: SessionContext) -> None:
        with self._lock:
            if ctx.session_id in self._sessions:
                raise SessionStateError(f"Session {ctx.session_id} is already in flight")
            self._sessions[ctx.session_id] = ctx

    def remove(self, session_id: UUID) -> Optional[SessionContext]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def get(self, session_id: UUID) -> Optional[SessionContext]:
        with self._lock:
            return self._sessions.get(session_id)

    def snapshot(self) -> List[SessionContext]:
        with self._lock:
            return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def session_end_timestamp(tree: Optional[SpanTree], started_at: int) -> int:
    """
    Where the root span ends: the latest end among top-level spans (and
    session-level events), or the session start when there are none.
    Placeholder spans are looked through to their children.
    """
    if tree is None:
        return started_at

    ends = []
    worklist = list(tree.top_level())
    while worklist:
        node = worklist.pop()
        if node.is_placeholder:
            worklist.extend(node.children)
        else:
            ends.append(node.end_timestamp)
    if not tree.root.is_placeholder:
        ends.append(tree.root.end_timestamp)
    return max(ends) if ends else started_at


class SessionTracer:
    """
    Opens and closes the root span for each session.

    When the session parameters carry a trace-context token under
    `context_key`, the root span continues that upstream trace; otherwise a
    new trace is started.
    """

    def __init__(
        self,
        backend: TracingBackend,
        registry: Optional[SessionRegistry] = None,
        context_key: str = "traceparent",
    ) -> None:
        self.backend = backend
        self.registry = registry if registry is not None else SessionRegistry()
        self.context_key = context_key

    def _continued_context(self, session: TraceSession) -> Optional[Any]:
        raw = session.parameters.get(self.context_key)
        if not raw:
            return None
        try:
            return self.backend.decode_propagated_context(raw)
        except PropagatedContextInvalid as exc:
            logger.warning(
                "Ignoring propagated context (%s): session=%s error=%s",
                PropagatedContextInvalid.kind,
                session.session_id,
                exc,
            )
            return None

    def start(self, session: TraceSession) -> SessionContext:
        ctx = SessionContext(
            session_id=session.session_id,
            started_at=session.started_at_micros,
        )
        continued = self._continued_context(session)

        handle = self.backend.new_root_span(continued)
        self.backend.name_span(handle, session.command or session.span_name)
        self.backend.tag_span(handle, SCYLLA_REQUEST_TAG, session.request or session.command)
        self.backend.tag_span(handle, SCYLLA_SESSION_TAG, str(session.session_id))
        if session.coordinator:
            self.backend.tag_span(handle, SCYLLA_COORDINATOR_TAG, session.coordinator)
        if session.query:
            self.backend.tag_span(handle, DB_STATEMENT_TAG, session.query)
        if session.client:
            self.backend.set_remote_endpoint(handle, session.client)
        self.backend.start_span(handle, ctx.started_at)

        ctx.root_handle = handle
        ctx.propagated = continued is not None
        ctx.transition(SessionState.STARTED, [SessionState.IDLE])
        self.registry.add(ctx)

        logger.debug(
            "Session started: session=%s propagated=%s",
            session.session_id,
            ctx.propagated,
        )
        return ctx

    def begin_annotating(self, ctx: SessionContext) -> None:
        ctx.transition(SessionState.ANNOTATING, [SessionState.STARTED])

    def annotate(self, ctx: SessionContext, timestamp: int, text: str) -> None:
        if ctx.state not in (SessionState.STARTED, SessionState.ANNOTATING):
            raise SessionStateError(
                f"Session {ctx.session_id}: cannot annotate in state {ctx.state.value}"
            )
        self.backend.annotate_span(ctx.root_handle, timestamp, text)

    def finish(self, ctx: SessionContext, end_timestamp: int) -> str:
        """Finish the root span and evict the session. Returns the trace id."""
        ctx.transition(
            SessionState.FINISHED,
            [SessionState.STARTED, SessionState.ANNOTATING],
        )
        try:
            self.backend.finish_span(ctx.root_handle, end_timestamp)
        finally:
            self.registry.remove(ctx.session_id)
        return self.backend.trace_id(ctx.root_handle)

    def fail(self, ctx: SessionContext, end_timestamp: int) -> None:
        """Best-effort close of a session whose pipeline broke."""
        if ctx.state in (SessionState.FINISHED, SessionState.FAILED):
            return
        ctx.state = SessionState.FAILED
        try:
            if ctx.root_handle is not None:
                self.backend.finish_span(ctx.root_handle, end_timestamp)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Best-effort root finish failed: session=%s error=%s",
                ctx.session_id,
                exc,
            )
        finally:
            self.registry.remove(ctx.session_id)
