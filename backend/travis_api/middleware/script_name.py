"""
Travis API — Script Name Prefix
=================================

What:  Honours the X-Script-Name header set by the fronting proxy.
Why:   When the API is served under a path prefix (e.g. /api), generated URLs
       must carry that prefix.
How:   Prepends the header to the ASGI root_path and records the result as
       request.state.global_prefix for endpoints building links.
"""

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

SCRIPT_NAME_HEADER = "X-Script-Name"


class ScriptNameMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            prefix = Headers(scope=scope).get(SCRIPT_NAME_HEADER, "") + scope.get("root_path", "")
            scope["root_path"] = prefix
            # What: scope["state"] backs request.state for every later layer
            scope.setdefault("state", {})["global_prefix"] = prefix
        await self.app(scope, receive, send)
