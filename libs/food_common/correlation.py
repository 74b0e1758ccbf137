# libs/food_common/correlation.py
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .logging_conf import trace_id_var

TRACE_HEADERS = ("x-trace-id", "x-request-id", "x-correlation-id")


class TraceIdMiddleware(BaseHTTPMiddleware):
    """Pick up (or mint) the trace id for a request and echo it back as x-trace-id."""

    async def dispatch(self, request: Request, call_next):
        trace_id = next((request.headers[h] for h in TRACE_HEADERS if request.headers.get(h)), None)
        trace_id = trace_id or str(uuid.uuid4())
        token = trace_id_var.set(trace_id)
        request.state.trace_id = trace_id
        try:
            response = await call_next(request)
        finally:
            trace_id_var.reset(token)
        response.headers["x-trace-id"] = trace_id
        return response
