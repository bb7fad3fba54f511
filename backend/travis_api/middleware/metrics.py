"""
Travis API — Request Metrics Middleware
=========================================

What:  Records request count and latency in the Prometheus registry.
How:   Latency is measured from request.state.request_start, which the
       request-context stage sets when the request enters the pipeline, so
       the time spent in outer stages (filters, CORS, compression) is
       included. Falls back to this stage's own entry time when absent.

A request whose handler raised before sending anything is counted as 500.
"""

import time

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from travis_api.monitoring import REQUEST_DURATION, REQUESTS_TOTAL


class MetricsMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = scope.get("state", {}).get("request_start") or time.time()
        # Stays 500 when the app raised before sending headers
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            labels = {"method": scope["method"], "status": str(status_code)}
            REQUESTS_TOTAL.labels(**labels).inc()
            REQUEST_DURATION.labels(**labels).observe(max(time.time() - started, 0.0))
