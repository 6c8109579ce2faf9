from __future__ import annotations

from typing import Any, Dict, Optional


class TraceLoaderError(Exception):
    """
    Base class for per-session failures.

    Anything derived from this is contained to the session being processed;
    the loader logs it and moves on to the next session.
    """
    kind = "trace_loader_error"


class MalformedGraphError(TraceLoaderError):
    """
    Raised when a session's events do not describe a tree
    (cycle, self-parented span, or a span claiming two parents).
    """
    kind = "malformed_graph"

    def __init__(self, reason: str, span_id: Optional[int] = None) -> None:
        self.reason = reason
        self.span_id = span_id
        if span_id is None:
            super().__init__(reason)
        else:
            super().__init__(f"{reason} (span_id={span_id})")


class MaterializationError(TraceLoaderError):
    """
    Raised when the tracing backend fails to create a span handle.

    `partial_handles` holds every handle created before the failure so the
    caller can finish them.
    """
    kind = "materialization_failure"

    def __init__(
        self,
        span_id: Optional[int],
        cause: BaseException,
        partial_handles: Optional[Dict[int, Any]] = None,
    ) -> None:
        self.span_id = span_id
        self.cause = cause
        self.partial_handles = dict(partial_handles or {})
        super().__init__(f"Backend failed to create span {span_id}: {cause}")


class AnnotationTargetMissing(TraceLoaderError):
    """An event references a span that has no backend handle."""
    kind = "annotation_target_missing"

    def __init__(self, span_id: int) -> None:
        self.span_id = span_id
        super().__init__(f"No span handle for span_id={span_id}")


class PropagatedContextInvalid(TraceLoaderError):
    """An upstream trace-context token could not be decoded."""
    kind = "propagated_context_invalid"


class SessionStateError(TraceLoaderError):
    """A session context was driven through an illegal state transition."""
    kind = "session_state_error"
