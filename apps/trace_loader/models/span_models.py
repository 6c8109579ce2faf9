from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Span tree
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class SpanNode:
    """
    One reconstructed span.

    Timestamps are microseconds since the epoch. A node that never had an
    event of its own (a parent referenced before, or without, any of its
    events) keeps the sentinel extremes: start=inf, end=0.
    """
    id: Optional[int]
    parent: Optional["SpanNode"] = field(default=None, repr=False)
    children: List["SpanNode"] = field(default_factory=list, repr=False)
    start_timestamp: float = math.inf
    end_timestamp: int = 0
    event_count: int = 0

    @property
    def is_root(self) -> bool:
        return self.id is None

    @property
    def is_placeholder(self) -> bool:
        return self.event_count == 0

    @property
    def is_top_level(self) -> bool:
        return self.parent is not None and self.parent.is_root

    def add_child(self, child: "SpanNode") -> None:
        self.children.append(child)
        child.parent = self

    def record(self, timestamp: int) -> None:
        self.start_timestamp = min(self.start_timestamp, timestamp)
        self.end_timestamp = max(self.end_timestamp, timestamp + 1)
        self.event_count += 1


@dataclass(eq=False)
class SpanTree:
    """
    Span id -> node mapping plus the synthetic root.

    The root has id None, is never materialized, and its children are the
    session's top-level spans.
    """
    root: SpanNode = field(default_factory=lambda: SpanNode(id=None))
    nodes: Dict[int, SpanNode] = field(default_factory=dict)

    def get_or_create(self, span_id: int) -> SpanNode:
        node = self.nodes.get(span_id)
        if node is None:
            node = SpanNode(id=span_id)
            self.nodes[span_id] = node
        return node

    def top_level(self) -> List[SpanNode]:
        return self.root.children

    def __getitem__(self, span_id: int) -> SpanNode:
        return self.nodes[span_id]

    def __contains__(self, span_id: object) -> bool:
        return span_id in self.nodes

    def __iter__(self) -> Iterator[int]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

class SessionState(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    ANNOTATING = "annotating"
    FINISHED = "finished"
    FAILED = "failed"


class SessionStatus(str, Enum):
    COMPLETED = "completed"
    MALFORMED = "malformed"
    FAILED = "failed"


class SessionResult(BaseModel):
    """Outcome of loading one session, as reported by the CLI and API."""
    session_id: UUID
    status: SessionStatus
    trace_id: Optional[str] = None
    span_count: int = 0
    annotation_count: int = 0
    dropped_annotations: int = 0
    error: Optional[str] = None


class LoadSummary(BaseModel):
    sessions_total: int = 0
    sessions_completed: int = 0
    sessions_malformed: int = 0
    sessions_failed: int = 0
    spans_total: int = 0
    results: List[SessionResult] = Field(default_factory=list)

    def add(self, result: SessionResult) -> None:
        self.results.append(result)
        self.sessions_total += 1
        self.spans_total += result.span_count
        if result.status == SessionStatus.COMPLETED:
            self.sessions_completed += 1
        elif result.status == SessionStatus.MALFORMED:
            self.sessions_malformed += 1
        else:
            self.sessions_failed += 1

    @property
    def ok(self) -> bool:
        return self.sessions_malformed == 0 and self.sessions_failed == 0
