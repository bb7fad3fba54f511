"""
Travis API — Request Context Middleware
=========================================

What:  Seeds the per-request context bag that later stages read.
Why:   The metrics stage measures from the moment the request entered the
       pipeline, and every log line of a request shares one request id.
How:   Sets request.state.request_start (only if an outer layer has not set
       it already), picks up or generates the request id, stores it in a
       ContextVar for loggers and echoes it as X-Request-ID.

Context keys produced:
    request_start  — epoch seconds (float), read by MetricsMiddleware
    request_id     — short correlation id, read by access logging
"""

import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local so concurrent requests on one event loop don't mix ids
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # An outer layer (or the server) may already have stamped the request
        if getattr(request.state, "request_start", None) is None:
            request.state.request_start = time.time()

        # Honour an id from the router so logs correlate across services
        rid = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]
        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
