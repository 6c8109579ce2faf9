"""Tests for the HTTP service."""

import uuid

import pytest
from fastapi.testclient import TestClient

from factories import FakeSource, make_event, make_session

from apps.trace_loader.app import app
from apps.trace_loader.routers import loads_router
from apps.trace_loader.routers.loads_router import get_loader
from apps.trace_loader.models.span_models import SessionState
from apps.trace_loader.services.session_tracer import SessionContext
from apps.trace_loader.services.trace_loader import TraceLoader


@pytest.fixture
def loader(backend, settings):
    session = make_session(session_id=uuid.uuid4(), started_at_micros=90)
    events = [make_event(1, 0, 100, "A", session_id=session.session_id)]
    return TraceLoader(FakeSource([session], {session.session_id: events}), backend, settings)


@pytest.fixture
def client(loader):
    app.dependency_overrides[get_loader] = lambda: loader
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthz(client):
    resp = client.get("/healthz")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "trace-loader"}


def test_run_load(client, backend):
    resp = client.post("/v1/loads", json={})

    assert resp.status_code == 200
    body = resp.json()
    assert body["sessions_total"] == 1
    assert body["sessions_completed"] == 1
    assert body["results"][0]["status"] == "completed"
    assert body["results"][0]["trace_id"] == "trace-0000"


def test_run_load_rejects_negative_limit(client):
    resp = client.post("/v1/loads", json={"limit": -1})

    assert resp.status_code == 422


def test_run_load_while_running(client):
    loads_router._run_lock.acquire()
    try:
        resp = client.post("/v1/loads", json={})
    finally:
        loads_router._run_lock.release()

    assert resp.status_code == 409


def test_source_failure_is_bad_gateway(client, loader):
    def unavailable(session_id):
        raise ConnectionError("no host available")

    loader.source.fetch_events = unavailable

    resp = client.post("/v1/loads", json={})

    assert resp.status_code == 502
    assert "no host available" in resp.json()["detail"]


def test_in_flight_sessions(client, loader):
    ctx = SessionContext(session_id=uuid.uuid4(), started_at=5, state=SessionState.ANNOTATING)
    loader.registry.add(ctx)

    resp = client.get("/v1/sessions/in-flight")

    assert resp.status_code == 200
    assert resp.json() == [
        {"session_id": str(ctx.session_id), "state": "annotating", "started_at": 5, "propagated": False}
    ]


def test_metrics_endpoint(client):
    client.post("/v1/loads", json={})

    resp = client.get("/metrics/")

    assert resp.status_code == 200
    assert "trace_loader_sessions_total" in resp.text
