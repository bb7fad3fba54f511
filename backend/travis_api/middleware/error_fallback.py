"""
Travis API — Error Fallback Middleware
========================================

What:  The outermost pipeline stage. Turns any unhandled exception into a
       fixed JSON 500 in production; re-raises it everywhere else.
Why:   Production clients must never see a stack trace and the serving loop
       must keep going. Developers and tests want the original exception.
How:   Pure ASGI middleware (like Starlette's ServerErrorMiddleware) rather
       than BaseHTTPMiddleware, because BaseHTTPMiddleware re-raises the
       downstream exception even after dispatch returned a response.

Production response:
    HTTP/1.1 500 Internal Server Error
    Content-Type: application/json

    {"error":"Travis encountered an error, sorry :("}

If the response had already started when the failure happened, nothing
sensible can be sent anymore and the exception is re-raised in every mode.
"""

import json
import logging

from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)


def error_body(service_name: str) -> bytes:
    return json.dumps(
        {"error": f"{service_name} encountered an error, sorry :("},
        separators=(",", ":"),
    ).encode("utf-8")


class ErrorFallbackMiddleware:
    def __init__(self, app: ASGIApp, production: bool = False, service_name: str = "Travis") -> None:
        self.app = app
        self.production = production
        self.body = error_body(service_name)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # What: once headers are on the wire a 500 can no longer be sent
        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            # Development and test: surface the real exception
            if not self.production or response_started:
                raise
            # Full traceback server-side; the client gets the fixed body only
            logger.exception(
                "Unhandled error on %s %s", scope.get("method", ""), scope.get("path", "")
            )
            response = Response(
                content=self.body,
                status_code=500,
                headers={"Content-Type": "application/json"},
            )
            await response(scope, receive, send)
