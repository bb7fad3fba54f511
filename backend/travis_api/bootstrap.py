"""
Travis API — One-Time Process Setup
=====================================

What:  Initializes everything the API process needs exactly once: logging,
       queue settings, database engines, the job queue client, monitoring,
       and the endpoint registry.
Why:   create_app() may run several times in one process (tests, multiple
       ASGI mounts); connections and monitoring hooks must not be duplicated.
How:   AppSetup holds a lock-protected "initialized" flag and runs its steps
       in a fixed order the first time ensure_initialized() is called.
       setup() is the entry point used by create_app().

Setup order:
    1. core service config  — logging, async flag, AMQP settings
    2. database connections — main engine, logs engine when configured
    3. queue client         — production and staging only
    4. monitoring           — production and staging, never in a console
    5. endpoint registration
    6. per-endpoint setup hooks

After the guarded part, setup() always applies endpoint options and, on the
managed hosting platform (DYNO set), touches the readiness sentinel file.
"""

import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any, Optional

from travis_api import database, monitoring, queue
from travis_api.config import Settings, settings
from travis_api.deploy import deploy_sha
from travis_api.endpoints import EndpointRegistry, registry as default_registry
from travis_api.routes import load_endpoints

logger = logging.getLogger(__name__)

PLATFORM_MARKER = "DYNO"


def setup_logging(config: Settings) -> None:
    """
    Configure logging for the whole process. Called once, before any other
    initialization step.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    # What: force=True replaces handlers installed before setup (e.g. by uvicorn)
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


class AppSetup:
    """
    Lazy, idempotent, thread-safe process initialization.

    Subclasses (and tests) may override the individual step methods; the
    order in which they run is fixed by _initialize().
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def ensure_initialized(self, config: Settings, registry: EndpointRegistry) -> bool:
        """Run setup if it has not run yet. Returns True when this call ran it."""
        # Fast path without the lock once setup has completed
        if self._initialized:
            return False
        with self._lock:
            # Re-check: another thread may have finished setup while we waited
            if self._initialized:
                return False
            self._initialize(config, registry)
            self._initialized = True
        return True

    def _initialize(self, config: Settings, registry: EndpointRegistry) -> None:
        try:
            self.setup_core(config)
            self.setup_database_connections(config)

            # What: real queues and monitoring exist only where the API is deployed
            if config.is_deployed:
                self.setup_queue_client(config)
            if config.is_deployed and not config.console_mode:
                self.setup_monitoring(config)

            self.load_endpoints(config, registry)
            self.setup_endpoints(config, registry)
        except Exception:
            # Flag stays False: the next create_app() runs every step again
            logger.exception("%s API setup failed", config.service_name)
            self.rollback()
            raise
        logger.info("%s API setup complete (%s, %s)",
                    config.service_name, config.environment, deploy_sha(config))

    # ── Steps ─────────────────────────────────────────────────────────────

    def setup_core(self, config: Settings) -> None:
        setup_logging(config)
        queue.configure_amqp(config)

    def setup_database_connections(self, config: Settings) -> None:
        database.connect(config)
        database.connect_logs(config)

    def setup_queue_client(self, config: Settings) -> None:
        queue.configure_client(config)

    def setup_monitoring(self, config: Settings) -> None:
        monitoring.setup_monitoring(config, database.engines().items(), release=deploy_sha(config))

    def load_endpoints(self, config: Settings, registry: EndpointRegistry) -> None:
        load_endpoints(registry, config)

    def setup_endpoints(self, config: Settings, registry: EndpointRegistry) -> None:
        registry.run_setup_hooks(config)

    def rollback(self) -> None:
        """Release what a failed run created. Endpoint registration is idempotent."""
        database.forget_engines()
        queue.client = None


app_setup = AppSetup()


def signal_ready(config: Settings) -> bool:
    """Touch the readiness sentinel when running on the managed platform."""
    if not os.environ.get(PLATFORM_MARKER):
        return False
    # What: the platform's boot check waits for this file
    Path(config.ready_sentinel_path).touch()
    return True


def setup(
    config: Optional[Settings] = None,
    registry: Optional[EndpointRegistry] = None,
    guard: Optional[AppSetup] = None,
    **options: Any,
) -> None:
    config = config or settings
    registry = registry if registry is not None else default_registry
    (guard or app_setup).ensure_initialized(config, registry)
    if options:
        registry.configure(**options)
    signal_ready(config)
