"""
Travis API — Database Connections
===================================

What:  Async SQLAlchemy engines for the main database and the optional logs
       database, plus the per-request session dependency.
Why:   Connection wiring is done once by the bootstrap; endpoints only ever
       ask for a session.
How:   connect() / connect_logs() create engines (no I/O until first use),
       get_db_session() yields a session that commits on success and rolls
       back on error, dispose_engines() closes pools at shutdown.
Who:   AppSetup (connect), endpoints (get_db_session), lifespan (dispose).

Connection Pooling:
    pool_size / max_overflow / pool_pre_ping come from settings. SQLite URLs
    (used by the test suite) get SQLAlchemy's default pool, since the sqlite
    dialect rejects queue-pool sizing arguments for in-memory databases.
"""

import logging
from typing import AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from travis_api.config import Settings
from travis_api.exceptions import DatabaseError

logger = logging.getLogger(__name__)

# Engine names; LOGS falls back to MAIN when no logs database is configured
MAIN = "main"
LOGS = "logs"

# What: Process-wide registries filled once by the bootstrap
_engines: Dict[str, AsyncEngine] = {}
_session_factories: Dict[str, async_sessionmaker] = {}


def _create_engine(url: str, config: Settings) -> AsyncEngine:
    # What: SQL echo only at DEBUG, it logs every statement
    options = {"echo": config.log_level == "DEBUG"}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_pre_ping=config.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return create_async_engine(url, **options)


def _register(name: str, url: str, config: Settings) -> AsyncEngine:
    engine = _create_engine(url, config)
    _engines[name] = engine
    _session_factories[name] = async_sessionmaker(
        engine,
        class_=AsyncSession,
        # What: objects stay readable after commit without another query
        expire_on_commit=False,
    )
    logger.info("Database '%s' configured (%s)", name, engine.url.render_as_string(hide_password=True))
    return engine


def connect(config: Settings) -> AsyncEngine:
    """Create the main engine. Called once by the bootstrap."""
    return _register(MAIN, config.database_url, config)


def connect_logs(config: Settings) -> Optional[AsyncEngine]:
    """
    Create the logs engine when a separate logs database is configured.

    Without LOGS_DATABASE_URL, log access goes through the main engine.
    """
    if not config.logs_database_url:
        return None
    return _register(LOGS, config.logs_database_url, config)


def get_engine(name: str = MAIN) -> AsyncEngine:
    # What: no separate logs database means logs live in the main one
    if name == LOGS and LOGS not in _engines:
        name = MAIN
    try:
        return _engines[name]
    except KeyError:
        raise DatabaseError(
            message="Database is not connected",
            context={"database": name},
        ) from None


def engines() -> Dict[str, AsyncEngine]:
    return dict(_engines)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a main-database session per request.

    Commits when the handler returns, rolls back and re-raises on any error,
    always closes the session.
    """
    factory = _session_factories.get(MAIN)
    if factory is None:
        raise DatabaseError(message="Database is not connected", context={"database": MAIN})

    async with factory() as session:
        try:
            # Auto-commit on success: handlers never call commit() themselves
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def ping(name: str = MAIN) -> bool:
    """Run SELECT 1 against the named database; False on any failure."""
    try:
        engine = get_engine(name)
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Database '%s' unreachable: %s", name, str(e))
        return False
    return True


async def dispose_engines() -> None:
    """Close every pooled connection. Called from the application lifespan."""
    for name, engine in list(_engines.items()):
        await engine.dispose()
        logger.info("Database '%s' disposed", name)


def forget_engines() -> None:
    """
    Drop every engine without awaiting anything. Used when setup fails
    before serving, so a retried setup starts from a clean slate.

    close=False leaves checked-in connections to the garbage collector;
    a failed setup has never checked any out.
    """
    for name, engine in list(_engines.items()):
        engine.sync_engine.dispose(close=False)
        logger.info("Database '%s' released after failed setup", name)
    _engines.clear()
    _session_factories.clear()
