"""
Travis API — Request Filters (Blacklist & Throttle)
=====================================================

What:  Rejects unwanted clients before any other logic runs.
Why:   A misbehaving client (e.g. a script hammering the API for ruby builds)
       should cost us one predicate check, not a database query.
How:   Named deny predicates are evaluated in registration order; the first
       match short-circuits with 420 Enhance Your Calm. Optionally, a per-IP
       sliding window throttle answers 429 once the budget is spent.

Blacklist response (wire contract with existing clients):
    HTTP/1.1 420 Enhance Your Calm
    Content-Type: text/plain; charset=utf-8

    Enhance Your Calm

Throttle algorithm: Sliding Window Counter
    1. Each IP gets a list of request timestamps
    2. On each request, drop timestamps older than the window
    3. If remaining count >= limit, reject with 429 and Retry-After
    4. Otherwise record the timestamp and let the request through

    The window map is process-local. Multi-worker deployments throttle per
    worker.
"""

import http
import logging
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from travis_api.config import Settings

logger = logging.getLogger(__name__)

Predicate = Callable[[Request], bool]

BLOCKED_STATUS = 420
BLOCKED_PHRASE = "Enhance Your Calm"

# Reason phrases for statuses http.HTTPStatus does not know about
STATUS_PHRASES: Dict[int, str] = {}


def register_status_phrase(status_code: int, phrase: str) -> None:
    """
    Teach the serving stack a non-standard reason phrase.

    ASGI responses carry no reason phrase; uvicorn derives the status line
    from its own tables, built from http.HTTPStatus at import time, so
    unknown codes go out with an empty phrase unless patched here.
    """
    STATUS_PHRASES[status_code] = phrase
    encoded = phrase.encode()

    from uvicorn.protocols.http import h11_impl

    h11_impl.STATUS_PHRASES[status_code] = encoded

    try:
        from uvicorn.protocols.http import httptools_impl
    except ImportError:
        # httptools is an optional uvicorn extra
        return
    httptools_impl.STATUS_LINE[status_code] = b"".join(
        [b"HTTP/1.1 ", str(status_code).encode(), b" ", encoded, b"\r\n"]
    )


def reason_phrase(status_code: int) -> str:
    if status_code in STATUS_PHRASES:
        return STATUS_PHRASES[status_code]
    try:
        return http.HTTPStatus(status_code).phrase
    except ValueError:
        return ""


def client_ip(request: Request) -> str:
    # What: the forwarded client when the peer is a trusted proxy (proxy_headers stage)
    return request.client.host if request.client else "unknown"


class RequestFilters:
    """
    Registry of named deny predicates and the optional throttle budget.

    Usage:
        filters = RequestFilters()

        @filters.blacklist("block scrapers")
        def _scrapers(request):
            return request.headers.get("user-agent", "").startswith("scraper")
    """

    def __init__(self, throttle_limit: int = 0, throttle_window: int = 3600):
        self._blacklists: Dict[str, Predicate] = {}
        self.throttle_limit = throttle_limit
        self.throttle_window = throttle_window

    def blacklist(self, name: str, predicate: Optional[Predicate] = None):
        if predicate is None:
            def decorator(fn: Predicate) -> Predicate:
                self._blacklists[name] = fn
                return fn
            return decorator
        self._blacklists[name] = predicate
        return predicate

    @property
    def blacklist_names(self) -> List[str]:
        return list(self._blacklists)

    def blocked_by(self, request: Request) -> Optional[str]:
        """Name of the first matching deny predicate, or None."""
        for name, predicate in self._blacklists.items():
            if predicate(request):
                return name
        return None


def build_request_filters(config: Settings) -> RequestFilters:
    """Filters for one pipeline build, read from settings."""
    register_status_phrase(BLOCKED_STATUS, BLOCKED_PHRASE)
    filters = RequestFilters(
        throttle_limit=config.rate_limit_requests,
        throttle_window=config.rate_limit_window,
    )
    blocked = frozenset(config.blocked_ips_list)
    if blocked:
        filters.blacklist(
            "block configured client addresses",
            lambda request: client_ip(request) in blocked,
        )
    return filters


class RequestFilterMiddleware(BaseHTTPMiddleware):
    """Blacklist first, then throttle, then delegate unchanged."""

    # What: idle IP entries are pruned once every this many requests
    cleanup_every = 1000

    def __init__(self, app, filters: RequestFilters):
        super().__init__(app)
        self.filters = filters
        # What: Dict mapping IP → request timestamps inside the current window
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rule = self.filters.blocked_by(request)
        if rule is not None:
            logger.warning("Blocked %s %s from %s (%s)",
                           request.method, request.url.path, client_ip(request), rule)
            return PlainTextResponse(BLOCKED_PHRASE, status_code=BLOCKED_STATUS)

        if self.filters.throttle_limit:
            throttled = self._throttle(client_ip(request))
            if throttled is not None:
                return throttled

        return await call_next(request)

    def _throttle(self, ip: str) -> Optional[Response]:
        limit = self.filters.throttle_limit
        window = self.filters.throttle_window
        now = time.time()
        window_start = now - window

        # ── Periodic cleanup of inactive IPs ──────────────────────────────
        # When: every cleanup_every-th request (throttled ones included),
        # counted independently of the map size so no round is skipped
        self._seen += 1
        if self._seen % self.cleanup_every == 0:
            self._cleanup_inactive_ips(window_start)

        # ── Sliding window: drop timestamps outside the window ────────────
        self._requests[ip] = [ts for ts in self._requests[ip] if ts > window_start]

        # ── Check rate limit ──────────────────────────────────────────────
        if len(self._requests[ip]) >= limit:
            oldest = self._requests[ip][0]
            retry_after = int(oldest + window - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                ip, len(self._requests[ip]), window,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Please wait {retry_after} seconds before retrying.",
                    "details": {"retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        # ── Record this request ───────────────────────────────────────────
        self._requests[ip].append(now)
        return None

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or max(timestamps) < window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]
        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))

