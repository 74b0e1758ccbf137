import logging

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from food_common.correlation import TraceIdMiddleware
from food_common.health import build_health_router
from food_common.logging_conf import TraceIdFilter, trace_id_var


def _record():
    return logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)


def test_filter_stamps_current_trace_id():
    token = trace_id_var.set("t-42")
    try:
        record = _record()
        TraceIdFilter().filter(record)
    finally:
        trace_id_var.reset(token)
    assert record.trace_id == "t-42"


def test_filter_defaults_to_dash():
    record = _record()
    TraceIdFilter().filter(record)
    assert record.trace_id == "-"


def _app():
    app = FastAPI()
    app.add_middleware(TraceIdMiddleware)
    app.include_router(build_health_router("demo"))

    @app.get("/trace")
    async def trace():
        return {"trace": trace_id_var.get()}

    return app


async def test_middleware_echoes_incoming_trace_id():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as ac:
        res = await ac.get("/trace", headers={"x-request-id": "req-1"})
    assert res.json() == {"trace": "req-1"}
    assert res.headers["x-trace-id"] == "req-1"


async def test_middleware_mints_trace_id_and_health_routes():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as ac:
        health = await ac.get("/healthz")
        ready = await ac.get("/readyz")
    assert health.json() == {"status": "ok", "service": "demo"}
    assert health.headers["x-trace-id"]
    assert ready.json() == {"ready": False}
