"""
Travis API — Path Traversal Protection
========================================

What:  Normalizes the request path before routing.
Why:   "/repos/../../etc/passwd" style paths (including encoded dots,
       slashes and backslashes) must never reach an endpoint as-is.
How:   Collapses "." and ".." segments and empty segments, keeping a
       trailing slash when the original path ended in one.

    /foo/../bar        → /bar
    /foo/%2e%2e/bar    → /bar
    /..\\..\\etc       → /etc
    /foo/bar/          → /foo/bar/
"""

import logging
import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

_TRAILING = re.compile(r"/\.{0,2}$")


def cleanup(path: str) -> str:
    # Encoded dots, slashes and backslashes count as their literal forms
    unescaped = re.sub("%2e", ".", path, flags=re.IGNORECASE)
    unescaped = re.sub("%2f", "/", unescaped, flags=re.IGNORECASE)
    unescaped = re.sub("%5c", "\\\\", unescaped, flags=re.IGNORECASE)
    unescaped = unescaped.replace("\\", "/")

    # ── Collapse segments ─────────────────────────────────────────────────
    parts = []
    for part in unescaped.split("/"):
        if not part or part == ".":
            continue
        # ".." above the root stays at the root
        if part == "..":
            if parts:
                parts.pop()
        else:
            parts.append(part)

    cleaned = "/" + "/".join(parts)
    # What: "/foo/", "/foo/." and "/foo/bar/.." keep their trailing slash
    if parts and _TRAILING.search(unescaped):
        cleaned += "/"
    return cleaned


class PathTraversalMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.scope["path"]
        cleaned = cleanup(path)
        if cleaned != path:
            logger.info("Normalized path %r to %r", path, cleaned)
            # Same scope dict the downstream app receives
            request.scope["path"] = cleaned
            request.scope["raw_path"] = cleaned.encode("utf-8")
        return await call_next(request)
