"""
HTTP trigger for loader runs.

Exposes:
- POST /v1/loads
- GET  /v1/sessions/in-flight
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..backend.otel_backend import OtelTracingBackend
from ..config import settings
from ..models.span_models import LoadSummary
from ..services.trace_loader import TraceLoader
from ..sources.scylla_source import ScyllaRecordSource
from ..utils.otel import setup_tracer_provider

router = APIRouter(tags=["trace-loader"])

logger = logging.getLogger("traceloader.api")

_loader: Optional[TraceLoader] = None
_loader_lock = threading.Lock()
# One load at a time: sessions are processed by a single worker.
_run_lock = threading.Lock()


class LoadRequest(BaseModel):
    limit: Optional[int] = Field(
        default=None,
        ge=0,
        description="Max sessions to load; defaults to TRACE_LOADER_SESSION_LIMIT",
    )


class InFlightSession(BaseModel):
    session_id: str
    state: str
    started_at: int
    propagated: bool


def get_loader() -> TraceLoader:
    """Build the process-wide loader on first use."""
    global _loader
    with _loader_lock:
        if _loader is None:
            provider = setup_tracer_provider(settings)
            source = ScyllaRecordSource.from_settings(settings)
            _loader = TraceLoader(source, OtelTracingBackend(provider), settings)
        return _loader


@router.post("/loads", response_model=LoadSummary)
def run_load(req: LoadRequest, loader: TraceLoader = Depends(get_loader)) -> LoadSummary:
    if not _run_lock.acquire(blocking=False):
        raise HTTPException(status_code=409, detail="A load is already running")
    try:
        return loader.run(limit=req.limit)
    except Exception as exc:  # source / cluster failure
        logger.exception("Load aborted: %s", exc)
        raise HTTPException(status_code=502, detail=f"Load aborted: {exc}") from exc
    finally:
        _run_lock.release()


@router.get("/sessions/in-flight", response_model=List[InFlightSession])
def in_flight(loader: TraceLoader = Depends(get_loader)) -> List[InFlightSession]:
    return [
        InFlightSession(
            session_id=str(ctx.session_id),
            state=ctx.state.value,
            started_at=ctx.started_at,
            propagated=ctx.propagated,
        )
        for ctx in loader.registry.snapshot()
    ]
