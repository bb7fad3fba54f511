"""
Travis API — JSONP Middleware
===============================

What:  Wraps JSON responses in a JavaScript callback when asked to.
Why:   Legacy browser clients load API data through <script> tags.
How:   On GET requests carrying ?callback=name, a JSON response body becomes
       "/**/name(<json>)" served as application/javascript. The body is
       buffered here and sent as one message, so the compression stage
       still sees the final size.

The leading comment guards against content-sniffing attacks (Rosetta Flash).
Callback names are restricted to JavaScript identifiers with dotted/indexed
access; anything else is answered with 400 without calling the endpoint.
"""

import re
from typing import List, Optional

from starlette.datastructures import Headers, MutableHeaders, QueryParams
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

CALLBACK_PARAM = "callback"
VALID_CALLBACK = re.compile(r"^[a-zA-Z_$][\.\[\]\w$]*$")


def wrap_body(callback: str, body: bytes) -> bytes:
    return b"/**/" + callback.encode() + b"(" + body + b")"


class JSONPMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] != "GET":
            await self.app(scope, receive, send)
            return

        callback = QueryParams(scope.get("query_string", b"")).get(CALLBACK_PARAM)
        if not callback:
            await self.app(scope, receive, send)
            return

        if not VALID_CALLBACK.match(callback):
            await PlainTextResponse("Bad Request", status_code=400)(scope, receive, send)
            return

        # What: held back until the whole JSON body is in
        start: Optional[Message] = None
        chunks: List[bytes] = []

        async def send_wrapper(message: Message) -> None:
            nonlocal start
            if message["type"] == "http.response.start":
                content_type = Headers(raw=message["headers"]).get("content-type", "")
                if content_type.startswith("application/json"):
                    start = message
                    return
                await send(message)
                return

            if message["type"] != "http.response.body" or start is None:
                await send(message)
                return

            chunks.append(message.get("body", b""))
            if message.get("more_body", False):
                return

            body = wrap_body(callback, b"".join(chunks))
            headers = MutableHeaders(raw=list(start["headers"]))
            headers["content-type"] = "application/javascript"
            headers["content-length"] = str(len(body))
            await send({**start, "headers": headers.raw})
            await send({"type": "http.response.body", "body": body, "more_body": False})

        await self.app(scope, receive, send_wrapper)
