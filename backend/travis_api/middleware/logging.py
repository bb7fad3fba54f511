"""
Travis API — Request Logging Middleware
=========================================

What:  One access log line per request with status and duration.
Why:   Enables monitoring, debugging and alerting on the API's traffic.
How:   Pure ASGI: watches the response start message for the status and
       logs once the response is complete; the level follows the status
       class so that 5xx responses can page and 4xx responses can be graphed.
When:  Inside the request-context and script-name stages, so the request id
       and the proxy prefix are both known.

Log line:
    GET /repos/travis-ci/travis-api 200 12.3ms [a1b2c3d4] from 192.168.1.100
    GET /repos 200 4.1ms [a1b2c3d4] from 192.168.1.100 via /api

What we log vs what we DON'T log (privacy):
    Log:       method, path, status, duration, IP, request ID, proxy prefix
    Don't log: request body, Authorization header, query strings with tokens
"""

import logging
import time

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from travis_api.middleware.request_context import request_id_var

logger = logging.getLogger("travis_api.access")

# Polled every few seconds by the platform; logging them buries real traffic
QUIET_PATHS = frozenset({"/health"})


def level_for(status: int) -> int:
    # 5xx → ERROR (our problem), 4xx → WARNING (client problem), else INFO
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in QUIET_PATHS:
            await self.app(scope, receive, send)
            return

        # Why perf_counter: monotonic and higher resolution than time.time()
        start_time = time.perf_counter()

        # What: client is None for some test transports and unix sockets
        client = scope.get("client")
        client_ip = client[0] if client else "unknown"
        method = scope["method"]
        path = scope["path"]
        rid = request_id_var.get("")
        prefix = scope.get("state", {}).get("global_prefix", "")

        status = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            suffix = f" via {prefix}" if prefix else ""
            logger.log(
                level_for(status),
                "%s %s %d %.1fms [%s] from %s%s",
                method,
                path,
                status,
                duration_ms,
                rid,
                client_ip,
                suffix,
                extra={
                    "request_id": rid,
                    "method": method,
                    "path": path,
                    "status": status,
                    "duration_ms": round(duration_ms, 2),
                    "client_ip": client_ip,
                    "global_prefix": prefix,
                },
            )
