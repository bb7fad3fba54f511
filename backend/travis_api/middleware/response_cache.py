"""
Travis API — Response Cache Middleware
========================================

What:  Serves repeated public GET responses from memory.
Why:   Popular read-only resources (badges, public repository pages) are
       requested far more often than they change.
How:   Feature-flagged at pipeline build time (USE_RESPONSE_CACHE). A response
       is stored when it is 200, marked Cache-Control: public with a positive
       max-age, sets no cookie, and the request carried no Authorization
       header. Entries expire after max-age.

Cache key:
    <namespace>:<METHOD>:<path>?<query>|accept=<Accept>|encoding=<Accept-Encoding>

    The namespace embeds the deploy SHA, so a deploy never serves responses
    rendered by the previous release. Accept-Encoding is part of the key
    because compression runs inside this stage.

X-Cache response header:
    fresh  — served from the cache
    store  — rendered and stored
    miss   — rendered, not cacheable
    pass   — request not eligible (method or credentials)
"""

import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

CACHEABLE_METHODS = frozenset({"GET"})
# s-maxage and max-age both bound the shared lifetime
_MAX_AGE = re.compile(r"(?:^|,)\s*(?:s-maxage|max-age)\s*=\s*(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class CachedResponse:
    status_code: int
    raw_headers: List[Tuple[bytes, bytes]]
    body: bytes


class MemoryCacheStore:
    """Bounded TTL store; least recently stored entries are evicted first."""

    def __init__(self, max_entries: int = 1024):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Tuple[float, CachedResponse]]" = OrderedDict()

    def get(self, key: str) -> Optional[CachedResponse]:
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, entry = item
        if expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return entry

    def set(self, key: str, entry: CachedResponse, ttl: int) -> None:
        # Re-stored keys move to the end of the eviction order
        self._entries.pop(key, None)
        self._entries[key] = (time.monotonic() + ttl, entry)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


def cache_ttl(response: Response) -> int:
    """Seconds the response may be shared for; 0 means not cacheable."""
    if response.status_code != 200 or "set-cookie" in response.headers:
        return 0
    cache_control = response.headers.get("cache-control", "").lower()
    if "public" not in cache_control or "no-store" in cache_control or "private" in cache_control:
        return 0
    match = _MAX_AGE.search(cache_control)
    return int(match.group(1)) if match else 0


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, store: MemoryCacheStore, namespace: str):
        super().__init__(app)
        self.store = store
        self.namespace = namespace

    def cache_key(self, request: Request) -> str:
        return "{}:{}:{}?{}|accept={}|encoding={}".format(
            self.namespace,
            request.method,
            request.url.path,
            request.url.query,
            request.headers.get("accept", ""),
            request.headers.get("accept-encoding", ""),
        )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # ── Not eligible: other methods, credentialed requests ────────────
        if request.method not in CACHEABLE_METHODS or "authorization" in request.headers:
            response = await call_next(request)
            response.headers["X-Cache"] = "pass"
            return response

        # ── Lookup ────────────────────────────────────────────────────────
        key = self.cache_key(request)
        entry = self.store.get(key)
        if entry is not None:
            response = Response(content=entry.body, status_code=entry.status_code)
            response.raw_headers = list(entry.raw_headers)
            response.headers["X-Cache"] = "fresh"
            return response

        # ── Render and maybe store ────────────────────────────────────────
        response = await call_next(request)
        ttl = cache_ttl(response)
        if not ttl:
            response.headers["X-Cache"] = "miss"
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        # What: the body is buffered, so content-length is known exactly
        raw_headers = [(k, v) for k, v in response.raw_headers if k.lower() != b"content-length"]
        raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))
        self.store.set(key, CachedResponse(response.status_code, raw_headers, body), ttl)
        logger.debug("Stored %s for %ds", key, ttl)

        stored = Response(content=body, status_code=response.status_code)
        stored.raw_headers = list(raw_headers)
        stored.headers["X-Cache"] = "store"
        return stored
