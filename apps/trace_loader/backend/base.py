from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional


class TracingBackend(ABC):
    """
    What the loader needs from a tracing client.

    Handles are opaque to the loader. A handle is created unnamed and
    unstarted; the caller names, tags and starts it afterwards. All
    timestamps are microseconds since the epoch.
    """

    @abstractmethod
    def new_root_span(self, continued: Optional[Any] = None) -> Any:
        """
        Handle for a span with no parent inside this session.

        `continued` is either a decoded propagated context or another
        handle whose trace the new span should join; None begins a new
        trace.
        """

    @abstractmethod
    def new_child_span(self, parent: Any) -> Any:
        ...

    @abstractmethod
    def name_span(self, handle: Any, name: str) -> None:
        ...

    @abstractmethod
    def tag_span(self, handle: Any, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def set_remote_endpoint(self, handle: Any, address: str) -> None:
        ...

    @abstractmethod
    def start_span(self, handle: Any, timestamp: int) -> None:
        ...

    @abstractmethod
    def annotate_span(self, handle: Any, timestamp: int, text: str) -> None:
        ...

    @abstractmethod
    def finish_span(self, handle: Any, timestamp: int) -> None:
        """Finish a started span. A no-op for unstarted or finished handles."""

    @abstractmethod
    def decode_propagated_context(self, raw: str) -> Any:
        """
        Decode an upstream trace-context token.

        Raises PropagatedContextInvalid when the token is unusable.
        """

    @abstractmethod
    def trace_id(self, handle: Any) -> str:
        """Printable trace id of the trace a handle belongs to."""
