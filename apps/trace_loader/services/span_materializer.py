from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..backend.base import TracingBackend
from ..errors import MaterializationError
from ..models.span_models import SpanTree
from .graph_builder import iter_breadth_first

logger = logging.getLogger("traceloader.materializer")


def materialize_spans(
    tree: SpanTree,
    backend: TracingBackend,
    session_handle: Optional[Any] = None,
) -> Dict[int, Any]:
    """
    Allocate one backend handle per span, parents strictly before children.

    Top-level spans continue `session_handle`'s trace when one is given and
    begin their own trace otherwise. Handles come back unnamed and
    unstarted, in creation order; the session's command, client and the
    node start times are applied by the caller.

    A backend failure aborts the walk with MaterializationError carrying
    the handles created so far.
    """
    handles: Dict[int, Any] = {}

    for node in iter_breadth_first(tree):
        try:
            if node.is_top_level:
                handle = backend.new_root_span(session_handle)
            else:
                handle = backend.new_child_span(handles[node.parent.id])
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Span materialization failed: span_id=%s created=%d error=%s",
                node.id,
                len(handles),
                exc,
            )
            raise MaterializationError(node.id, exc, partial_handles=handles) from exc

        handles[node.id] = handle

    logger.debug("Materialized %d spans", len(handles))
    return handles


def finish_partial(
    handles: Dict[int, Any],
    tree: SpanTree,
    backend: TracingBackend,
) -> int:
    """
    Best-effort finish of a session's handles after a failure, children
    first. Returns how many finish calls went through.
    """
    finished = 0
    for span_id in reversed(list(handles)):
        node = tree.nodes.get(span_id)
        if node is None or node.is_placeholder:
            continue
        try:
            backend.finish_span(handles[span_id], node.end_timestamp)
            finished += 1
        except Exception as exc:  # noqa: BLE001
            logger.warning("Best-effort finish failed: span_id=%s error=%s", span_id, exc)
    return finished
