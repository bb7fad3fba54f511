"""
Travis API — CORS Middleware
==============================

What:  Adds cross-origin headers to every response and answers preflight
       (OPTIONS) requests itself.
Why:   Browser clients on other origins call the API directly. The exact
       header values are relied on by existing clients, so this is not
       Starlette's CORSMiddleware: that one echoes the request Origin and
       only treats OPTIONS with Access-Control-Request-Method as preflight.

Every response:
    Access-Control-Allow-Origin: *
    Access-Control-Allow-Credentials: true
    Access-Control-Expose-Headers: Content-Type, Cache-Control, Expires, Etag, Last-Modified

OPTIONS (answered here with 200, never delegated), additionally:
    Access-Control-Allow-Methods: HEAD, GET, POST, PATCH, PUT, DELETE
    Access-Control-Allow-Headers: Content-Type, Authorization, Accept, If-None-Match, If-Modified-Since, X-User-Agent
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

CORS_HEADERS = (
    ("Access-Control-Allow-Origin", "*"),
    ("Access-Control-Allow-Credentials", "true"),
    ("Access-Control-Expose-Headers", "Content-Type, Cache-Control, Expires, Etag, Last-Modified"),
)

PREFLIGHT_HEADERS = (
    ("Access-Control-Allow-Methods", "HEAD, GET, POST, PATCH, PUT, DELETE"),
    ("Access-Control-Allow-Headers",
     "Content-Type, Authorization, Accept, If-None-Match, If-Modified-Since, X-User-Agent"),
)


class CorsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Preflight: answered here, the endpoint never runs
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)

        # Every status, including errors from the endpoint
        for name, value in CORS_HEADERS:
            response.headers[name] = value
        if request.method == "OPTIONS":
            for name, value in PREFLIGHT_HEADERS:
                response.headers[name] = value
        return response
