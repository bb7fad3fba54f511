"""
Travis API — JSON Body Parser
===============================

What:  Parses JSON request bodies into request.state.params.
Why:   Endpoints read parameters the same way whether the client sent a form
       or a JSON document.
How:   For POST/PUT/PATCH/DELETE with a JSON content type and a non-empty
       body, reads the body once and replays it to the downstream app, so
       handlers can still call request.body(). Malformed JSON is answered
       with 400 here, since this stage runs outside FastAPI's exception
       handlers.

Only JSON objects become params; any other JSON value leaves params empty.
"""

import json
import logging
from typing import Any, Dict, Tuple

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from travis_api.exceptions import MalformedBodyError

logger = logging.getLogger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def is_json(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def parse_params(body: bytes) -> Dict[str, Any]:
    try:
        document = json.loads(body)
    except ValueError as e:
        raise MalformedBodyError(context={"reason": str(e)}) from e
    return document if isinstance(document, dict) else {}


async def read_body(receive: Receive) -> Tuple[bytes, Receive]:
    """
    Drain the request body and return it with a receive callable that
    replays it once, then defers to the server's receive (disconnects).
    """
    chunks = []
    more_body = True
    while more_body:
        message = await receive()
        if message["type"] != "http.request":
            # What: client went away mid-upload; hand the disconnect on
            pending = message
            break
        chunks.append(message.get("body", b""))
        more_body = message.get("more_body", False)
    else:
        pending = None

    body = b"".join(chunks)
    replayed = False

    async def replay() -> Message:
        nonlocal replayed, pending
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        if pending is not None:
            message, pending = pending, None
            return message
        return await receive()

    return body, replay


class JSONBodyParserMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # What: scope["state"] is request.state for the endpoint; params always exist
        state = scope.setdefault("state", {})
        state["params"] = {}

        content_type = Headers(scope=scope).get("content-type", "")
        if scope["method"] not in BODY_METHODS or not is_json(content_type):
            await self.app(scope, receive, send)
            return

        # Downstream gets a receive that replays the drained body
        body, receive = await read_body(receive)
        if body.strip():
            try:
                state["params"] = parse_params(body)
            except MalformedBodyError as exc:
                logger.warning("Rejected %s %s: %s | Context: %s",
                               scope["method"], scope["path"], exc.message, exc.context)
                response = JSONResponse(
                    status_code=exc.status_code,
                    content={"error": exc.error_code, "message": exc.message},
                )
                await response(scope, receive, send)
                return

        await self.app(scope, receive, send)
