"""
Travis API — Monitoring
=========================

What:  Prometheus metrics for requests and SQL queries, plus Sentry error
       tracking.
Why:   The metrics stage of the pipeline and the SQL event hooks need a shared
       registry; Sentry must be initialized before its ASGI middleware runs.
How:   Metrics live in a private CollectorRegistry created at import (once per
       process, so rebuilding the app never re-registers collectors).
       setup_monitoring() is called by AppSetup in production/staging only,
       and never from a console.
"""

import logging
import time
from typing import Iterable

import sentry_sdk
from prometheus_client import CollectorRegistry, Counter, Histogram
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine

from travis_api.config import Settings

logger = logging.getLogger(__name__)

# What: Private registry; /metrics exposes only these collectors
REGISTRY = CollectorRegistry()

REQUEST_DURATION = Histogram(
    "travis_api_request_duration_seconds",
    "Time from request start to response",
    ["method", "status"],
    registry=REGISTRY,
)
REQUESTS_TOTAL = Counter(
    "travis_api_requests_total",
    "HTTP requests served",
    ["method", "status"],
    registry=REGISTRY,
)
QUERY_DURATION = Histogram(
    "travis_api_db_query_duration_seconds",
    "SQL statement execution time",
    ["database"],
    registry=REGISTRY,
)


def setup_error_tracking(config: Settings, release: str) -> bool:
    """Initialize Sentry when a DSN is configured. Returns whether it was."""
    if not config.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=config.sentry_dsn,
        environment=config.environment,
        release=release,
    )
    logger.info("Sentry error tracking enabled (%s)", config.environment)
    return True


def attach_query_metrics(name: str, engine: AsyncEngine) -> None:
    """Record every statement's duration against the engine's name."""
    # What: SQLAlchemy events live on the sync engine behind the async facade
    sync_engine = engine.sync_engine
    # Already instrumented: a retried setup must not double count
    if event.contains(sync_engine, "before_cursor_execute", _before_cursor_execute):
        return

    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        started = conn.info["query_start_time"].pop()
        QUERY_DURATION.labels(database=name).observe(time.perf_counter() - started)

    event.listen(sync_engine, "before_cursor_execute", _before_cursor_execute)
    event.listen(sync_engine, "after_cursor_execute", _after_cursor_execute)


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    # Stack, not a single value: cursor executions can nest on one connection
    conn.info.setdefault("query_start_time", []).append(time.perf_counter())


def setup_monitoring(config: Settings, engines: Iterable, release: str) -> None:
    setup_error_tracking(config, release)
    for name, engine in engines:
        attach_query_metrics(name, engine)
    logger.info("Monitoring attached")
