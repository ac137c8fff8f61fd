import asyncio
import threading
import time

import httpx
import pytest
from fastapi import FastAPI

from app.config import HttpSettings
from app.infrastructure.server import DeadlineMiddleware, Server, ServerState
from app.obs.middleware import install_pipeline

from conftest import read_records


def _slow_app(logger, delay, in_flight: threading.Event):
    app = FastAPI()
    install_pipeline(app, logger)

    @app.get("/slow")
    async def slow():
        in_flight.set()
        await asyncio.sleep(delay)
        return {"slept": delay}

    @app.get("/fast")
    async def fast():
        return {"ok": True}

    return app


def _request_in_background(url, results):
    def run():
        try:
            results.append(httpx.get(url, timeout=10).status_code)
        except httpx.HTTPError as e:
            results.append(e)

    t = threading.Thread(target=run, daemon=True)
    t.start()
    return t


def _started_server(app, logger, shutdown_timeout):
    srv = Server(HttpSettings(host="127.0.0.1", port=0), app, logger, shutdown_timeout=shutdown_timeout)
    srv.start()
    assert srv.wait_until_started(5.0)
    return srv


def test_start_returns_immediately_and_serves(logger):
    app = _slow_app(logger, 0, threading.Event())
    srv = Server(HttpSettings(host="127.0.0.1", port=0), app, logger)
    assert srv.state is ServerState.STOPPED

    t0 = time.monotonic()
    srv.start()
    assert time.monotonic() - t0 < 1.0
    assert srv.state is ServerState.RUNNING

    try:
        assert srv.wait_until_started(5.0)
        r = httpx.get(f"http://127.0.0.1:{srv.bound_port}/fast", timeout=5)
        assert r.status_code == 200
        assert r.headers["X-Request-ID"]
    finally:
        srv.stop()
    assert srv.state is ServerState.STOPPED


def test_stop_waits_for_in_flight_request(logger):
    in_flight = threading.Event()
    srv = _started_server(_slow_app(logger, 0.5, in_flight), logger, shutdown_timeout=5.0)

    results = []
    t = _request_in_background(f"http://127.0.0.1:{srv.bound_port}/slow", results)
    assert in_flight.wait(5.0)

    srv.stop()
    t.join(5.0)

    assert results == [200]
    assert srv.state is ServerState.STOPPED


def test_stop_force_closes_requests_past_the_bound(logger):
    in_flight = threading.Event()
    srv = _started_server(_slow_app(logger, 30, in_flight), logger, shutdown_timeout=0.5)

    results = []
    t = _request_in_background(f"http://127.0.0.1:{srv.bound_port}/slow", results)
    assert in_flight.wait(5.0)

    t0 = time.monotonic()
    srv.stop()
    elapsed = time.monotonic() - t0
    t.join(5.0)

    assert elapsed < 5.0
    assert srv.state is ServerState.STOPPED
    assert results and results[0] != 200


def test_restart_waits_for_a_fresh_bind(logger):
    srv = _started_server(_slow_app(logger, 0, threading.Event()), logger, shutdown_timeout=1.0)
    srv.stop()

    srv.start()
    try:
        assert srv.wait_until_started(5.0)
        r = httpx.get(f"http://127.0.0.1:{srv.bound_port}/fast", timeout=5)
        assert r.status_code == 200
    finally:
        srv.stop()
    assert srv.state is ServerState.STOPPED


def test_restart_does_not_report_previous_run_as_started(logger, monkeypatch):
    srv = _started_server(FastAPI(), logger, shutdown_timeout=1.0)
    srv.stop()

    # hold the new listener thread before it binds
    gate = threading.Event()
    monkeypatch.setattr(srv, "_serve", gate.wait)
    srv.start()
    try:
        assert srv.wait_until_started(0.2) is False
        assert srv.bound_port is None
    finally:
        gate.set()
        srv.stop()


def test_stop_is_idempotent(logger):
    srv = Server(HttpSettings(host="127.0.0.1", port=0), FastAPI(), logger)
    srv.stop()
    assert srv.state is ServerState.STOPPED


def test_listener_error_is_logged_not_raised(logger, log_output):
    first = _started_server(FastAPI(), logger, shutdown_timeout=1.0)
    try:
        second = Server(HttpSettings(host="127.0.0.1", port=first.bound_port), FastAPI(), logger)
        second.start()
        assert second.wait_until_started(5.0) is False
        second.stop()
        assert second.state is ServerState.STOPPED
    finally:
        first.stop()

    errors = [r for r in read_records(log_output) if r["msg"] == "Error occurred while running http server"]
    assert errors
    assert errors[0]["component"] == "server"


async def test_read_deadline():
    async def app(scope, receive, send):
        await receive()

    async def never():
        await asyncio.sleep(10)

    guarded = DeadlineMiddleware(app, read_timeout=0.05)
    with pytest.raises(asyncio.TimeoutError):
        await guarded({"type": "http"}, never, None)


async def test_write_deadline():
    async def app(scope, receive, send):
        await send({"type": "http.response.start", "status": 200})

    async def stuck(message):
        await asyncio.sleep(10)

    guarded = DeadlineMiddleware(app, write_timeout=0.05)
    with pytest.raises(asyncio.TimeoutError):
        await guarded({"type": "http"}, None, stuck)


async def test_receive_after_body_has_no_deadline():
    received = []

    async def app(scope, receive, send):
        received.append(await receive())
        await asyncio.sleep(0.1)
        received.append(await receive())

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    guarded = DeadlineMiddleware(app, read_timeout=0.05)
    await guarded({"type": "http"}, receive, None)
    assert len(received) == 2
