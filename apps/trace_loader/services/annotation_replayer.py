from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..backend.base import TracingBackend
from ..errors import AnnotationTargetMissing
from ..models.span_models import SpanTree
from ..models.trace_models import TraceEvent
from .graph_builder import event_timestamp

logger = logging.getLogger("traceloader.replayer")

_SortKey = Tuple[int, Tuple[int, bytes], int]


@dataclass
class ReplayResult:
    annotated: int = 0
    dropped: int = 0
    finished: int = 0


def _natural_key(event: TraceEvent) -> Tuple[int, bytes]:
    if event.event_id is None or event.event_id.version != 1:
        return (0, b"")
    return (event.event_id.time, event.event_id.bytes)


def replay_annotations(
    events: Sequence[TraceEvent],
    tree: SpanTree,
    handles: Dict[int, Any],
    backend: TracingBackend,
    session_started_at: Optional[int] = None,
    session_handle: Optional[Any] = None,
) -> ReplayResult:
    """
    Attach every event's activity to its span, then finish the spans.

    Spans are visited in reverse creation order so children finish before
    their parents. Within a span annotations go out in timestamp order, ties
    broken by event id. Placeholder spans have nothing to replay and are
    left unfinished. Span-less events land on `session_handle` if given.
    """
    result = ReplayResult()
    per_span: Dict[int, List[Tuple[_SortKey, TraceEvent]]] = defaultdict(list)
    session_level: List[Tuple[_SortKey, TraceEvent]] = []

    for position, event in enumerate(events):
        key = (event_timestamp(event, session_started_at), _natural_key(event), position)

        if event.span_id is None:
            session_level.append((key, event))
        elif event.span_id in handles:
            per_span[event.span_id].append((key, event))
        else:
            missing = AnnotationTargetMissing(event.span_id)
            result.dropped += 1
            logger.warning(
                "Annotation dropped (%s): session=%s activity=%r error=%s",
                missing.kind,
                event.session_id,
                event.activity,
                missing,
            )

    for span_id in reversed(list(handles)):
        handle = handles[span_id]
        for key, event in sorted(per_span.get(span_id, ()), key=lambda entry: entry[0]):
            backend.annotate_span(handle, key[0], event.activity)
            result.annotated += 1

        node = tree.nodes.get(span_id)
        if node is None or node.is_placeholder:
            continue
        backend.finish_span(handle, node.end_timestamp)
        result.finished += 1

    if session_handle is not None:
        for key, event in sorted(session_level, key=lambda entry: entry[0]):
            backend.annotate_span(session_handle, key[0], event.activity)
            result.annotated += 1

    logger.debug(
        "Replay done: annotated=%d dropped=%d finished=%d",
        result.annotated,
        result.dropped,
        result.finished,
    )
    return result
