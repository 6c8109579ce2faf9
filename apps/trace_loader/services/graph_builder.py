"""
Span graph reconstruction.

The events table is a flat log: each row names the span it belongs to and
that span's parent, nothing else. The tree is rebuilt in a single pass over
the events, creating nodes on first reference (as a span or as a parent),
and span timing is derived from the events since Scylla never records when
a span ends: a span starts at its first event and lasts one microsecond past
its last one.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Iterable, Iterator, Optional, Set

from ..errors import MalformedGraphError
from ..models.span_models import SpanNode, SpanTree
from ..models.trace_models import TraceEvent

logger = logging.getLogger("traceloader.graph_builder")


def event_timestamp(event: TraceEvent, session_started_at: Optional[int] = None) -> int:
    """
    Event time in microseconds.

    Prefers the timestamp embedded in the event's timeuuid; falls back to
    session start + source_elapsed.
    """
    ts = event.event_time_micros()
    if ts is not None:
        return ts
    if session_started_at is None:
        raise MalformedGraphError(
            "event has no time-based event_id and no session start to offset from",
            span_id=event.span_id,
        )
    return session_started_at + (event.source_elapsed or 0)


def build_span_graph(
    events: Iterable[TraceEvent],
    session_started_at: Optional[int] = None,
) -> SpanTree:
    tree = SpanTree()

    for event in events:
        ts = event_timestamp(event, session_started_at)

        # Session-level event: only the synthetic root sees it.
        if event.span_id is None:
            tree.root.record(ts)
            continue

        if event.span_id == event.parent_span_id:
            raise MalformedGraphError("span is its own parent", span_id=event.span_id)

        child = tree.get_or_create(event.span_id)
        if event.parent_span_id is None:
            parent = tree.root
        else:
            parent = tree.get_or_create(event.parent_span_id)

        if child.parent is None:
            parent.add_child(child)
        elif child.parent is not parent:
            raise MalformedGraphError(
                f"span claims parent {event.parent_span_id} but is already "
                f"linked under {child.parent.id}",
                span_id=event.span_id,
            )

        child.record(ts)

    _check_acyclic(tree)
    _adopt_orphans(tree)

    logger.debug(
        "Built span graph: nodes=%d top_level=%d",
        len(tree),
        len(tree.top_level()),
    )
    return tree


def _check_acyclic(tree: SpanTree) -> None:
    """
    Walk every node towards the root. A walk longer than the node count can
    only mean a cycle.
    """
    limit = len(tree)
    verified: Set[int] = set()

    for node in tree.nodes.values():
        path = []
        current: Optional[SpanNode] = node
        while current is not None and not current.is_root and current.id not in verified:
            path.append(current.id)
            if len(path) > limit:
                raise MalformedGraphError("cycle in parent chain", span_id=node.id)
            current = current.parent
        verified.update(path)


def _adopt_orphans(tree: SpanTree) -> None:
    # Ids only ever seen as a parent have no parent of their own; hang them
    # off the root so their children stay reachable.
    for node in tree.nodes.values():
        if node.parent is None:
            logger.debug("Placeholder span %s attached to session root", node.id)
            tree.root.add_child(node)


def iter_breadth_first(tree: SpanTree) -> Iterator[SpanNode]:
    """Nodes in parent-before-child order, starting at the top-level spans."""
    worklist = deque(tree.top_level())
    while worklist:
        node = worklist.popleft()
        yield node
        worklist.extend(node.children)
