"""
Travis API — FastAPI Application Factory
==========================================

What:  Creates the ASGI application serving the Travis CI HTTP API.
How:   create_app() runs the one-time process setup, builds the request
       pipeline from settings, registers exception handlers and mounts every
       registered endpoint under its prefix.
Who:   uvicorn (uvicorn travis_api.main:app), tests, embedding applications.

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Pipeline (outermost first):                        │
    │  error fallback → proxy headers → request context   │
    │  → filters → CORS                                   │
    │  → [sentry] → path traversal → [tls] → [cache]      │
    │  → gzip → body parser → jsonp → script name         │
    │  → access log → metrics                             │
    │                                                     │
    │  Endpoints:  /  ·  /health  ·  /metrics             │
    │                                                     │
    │  Exception Handlers:  APIError → error.status_code  │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Import/construction: process setup (once), pipeline build (per app)
    Shutdown:            dispose database engines, close queue client
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from travis_api import __version__, database, queue
from travis_api.bootstrap import setup
from travis_api.config import Settings, settings
from travis_api.endpoints import EndpointRegistry, registry as default_registry
from travis_api.exceptions import APIError
from travis_api.middleware.request_context import request_id_var
from travis_api.pipeline import build_pipeline
from travis_api.schemas.api import ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    # Connections were configured by setup(); nothing opens until first use
    config: Settings = app.state.config
    logger.info("%s API ready at http://%s:%d", config.service_name,
                config.backend_host, config.backend_port)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("%s API shutting down...", config.service_name)
    # Close pooled database connections before the worker exits
    await database.dispose_engines()
    if queue.client is not None:
        await queue.client.close()
    logger.info("Shutdown complete.")


def register_exception_handlers(app: FastAPI) -> None:
    """
    Render APIError subclasses as JSON with their own status code.

    No handler for Exception: unhandled failures must reach the error
    fallback stage, which decides between masking and re-raising.
    """

    @app.exception_handler(APIError)
    async def handle_api_error(request: Request, exc: APIError):
        rid = request_id_var.get("")
        # Log full context server-side (NOT in the response)
        if exc.status_code >= 500:
            logger.error("[%s] %s | Context: %s", rid, exc.message, exc.context)
        else:
            logger.warning("[%s] %s", rid, exc.message)
        body = ErrorResponse(error=exc.error_code, message=exc.message, request_id=rid)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def build_app(config: Settings, registry: EndpointRegistry) -> FastAPI:
    """Assemble an application from an already initialized process."""
    pipeline = build_pipeline(config)

    # ── Register Middleware ───────────────────────────────────────────────
    # FastAPI(middleware=[...]) keeps list order: the first stage is outermost
    app = FastAPI(
        title=f"{config.service_name} API",
        version=__version__,
        middleware=pipeline.middleware,
        lifespan=lifespan,
    )
    # What: endpoints read settings and the stage list from app.state
    app.state.config = config
    app.state.pipeline = pipeline

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)
    # ── Register Routes ───────────────────────────────────────────────────
    registry.mount(app)
    logger.debug("Pipeline: %s", " → ".join(pipeline.names))
    return app


def create_app(
    config: Optional[Settings] = None,
    registry: Optional[EndpointRegistry] = None,
    **options: Any,
) -> FastAPI:
    """
    Create the application. Safe to call repeatedly: process setup runs on
    the first call only, every call gets its own pipeline.
    """
    config = config or settings
    registry = registry if registry is not None else default_registry
    setup(config, registry, **options)
    return build_app(config, registry)


# uvicorn expects `travis_api.main:app` to be importable
app = create_app()
