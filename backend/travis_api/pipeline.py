"""
Travis API — Request Pipeline
===============================

What:  The ordered chain of middleware every request passes through.
Why:   Composition order encodes precedence (security before caching,
       caching before business logic, error fallback around everything), so
       it is declared in exactly one place.
How:   build_pipeline() turns settings into an immutable Pipeline of named
       stages. Conditional stages (Sentry, TLS, response cache) are decided
       here, once, from settings; nothing is skipped per request.
       The Pipeline is handed to FastAPI(middleware=...) or composed directly
       with Pipeline.wrap(app). Either way the first stage is outermost.

Ordering guarantee:
    Stage N's code before call_next() runs before stage N+1's; its code after
    call_next() runs after stage N+1 has completely finished.
"""

from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple

from sentry_sdk.integrations.asgi import SentryAsgiMiddleware
from starlette.middleware import Middleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.types import ASGIApp
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from travis_api.config import Settings
from travis_api.deploy import deploy_sha
from travis_api.middleware.body_parser import JSONBodyParserMiddleware
from travis_api.middleware.cors import CorsMiddleware
from travis_api.middleware.error_fallback import ErrorFallbackMiddleware
from travis_api.middleware.jsonp import JSONPMiddleware
from travis_api.middleware.logging import RequestLoggingMiddleware
from travis_api.middleware.metrics import MetricsMiddleware
from travis_api.middleware.path_traversal import PathTraversalMiddleware
from travis_api.middleware.request_context import RequestContextMiddleware
from travis_api.middleware.request_filters import RequestFilterMiddleware, build_request_filters
from travis_api.middleware.response_cache import MemoryCacheStore, ResponseCacheMiddleware
from travis_api.middleware.script_name import ScriptNameMiddleware


@dataclass(frozen=True)
class Stage:
    name: str
    middleware: Middleware


class Pipeline:
    """Immutable, ordered sequence of stages; index 0 is the outermost."""

    def __init__(self, stages: Sequence[Stage]):
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate pipeline stage in {names}")
        self._stages: Tuple[Stage, ...] = tuple(stages)

    @property
    def names(self) -> List[str]:
        return [stage.name for stage in self._stages]

    @property
    def middleware(self) -> List[Middleware]:
        return [stage.middleware for stage in self._stages]

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __contains__(self, name: str) -> bool:
        return name in self.names

    def wrap(self, app: ASGIApp) -> ASGIApp:
        """Compose every stage around `app`; the result executes the whole chain."""
        for stage in reversed(self._stages):
            cls, args, kwargs = stage.middleware
            app = cls(app, *args, **kwargs)
        return app


def build_pipeline(config: Settings) -> Pipeline:
    stages = [
        # Error fallback: outermost, so nothing escapes it in production
        Stage("error_fallback", Middleware(
            ErrorFallbackMiddleware,
            production=config.is_production,
            service_name=config.service_name,
        )),
        # Proxy headers: client address and scheme reported by the fronting router
        # Why before filters: the deny list and TLS redirect read both
        Stage("proxy_headers", Middleware(
            ProxyHeadersMiddleware, trusted_hosts=config.forwarded_allow_ips,
        )),
        # Request context: start timestamp and request id for every later stage
        Stage("request_context", Middleware(RequestContextMiddleware)),
        # Request filters: a blocked client costs one predicate check
        Stage("request_filters", Middleware(
            RequestFilterMiddleware, filters=build_request_filters(config),
        )),
        # CORS: preflight answered before any security or cache work
        Stage("cors", Middleware(CorsMiddleware)),
    ]

    if config.is_production and config.sentry_dsn:
        stages.append(Stage("error_tracking", Middleware(SentryAsgiMiddleware)))

    stages.append(Stage("path_traversal", Middleware(PathTraversalMiddleware)))

    if config.is_production:
        stages.append(Stage("tls", Middleware(HTTPSRedirectMiddleware)))

    if config.use_response_cache:
        # What: namespaced by release so a deploy never serves stale bodies
        stages.append(Stage("response_cache", Middleware(
            ResponseCacheMiddleware,
            store=MemoryCacheStore(config.response_cache_max_entries),
            namespace=f"body-{deploy_sha(config)}",
        )))

    # Everything inside gzip is pure ASGI: a BaseHTTPMiddleware here would
    # stream the body in chunks and gzip would compress even tiny responses
    stages.extend([
        Stage("gzip", Middleware(GZipMiddleware, minimum_size=config.gzip_minimum_size)),
        Stage("body_parser", Middleware(JSONBodyParserMiddleware)),
        Stage("jsonp", Middleware(JSONPMiddleware)),
        Stage("script_name", Middleware(ScriptNameMiddleware)),
        Stage("access_log", Middleware(RequestLoggingMiddleware)),
        Stage("metrics", Middleware(MetricsMiddleware)),
    ])
    return Pipeline(stages)
