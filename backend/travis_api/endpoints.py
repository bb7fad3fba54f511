"""
Travis API — Endpoint Registry
================================

What:  Prefix → router mapping for every API endpoint.
Why:   Endpoints are registered explicitly at setup ("discover once, mount
       many"): the bootstrap fills the registry once per process and every
       application built afterwards mounts the same endpoints.
How:   register() records an Endpoint; run_setup_hooks() calls each
       endpoint's one-time hook; mount() includes every concrete endpoint's
       router under its prefix.

Abstract endpoints (base routers meant to be specialised, never served) are
kept in the registry but skipped by mount().
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

from fastapi import APIRouter, FastAPI

from travis_api.config import Settings
from travis_api.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SetupHook = Callable[[Settings], None]


@dataclass
class Endpoint:
    name: str
    prefix: str
    router: APIRouter
    setup_hook: Optional[SetupHook] = None
    abstract: bool = False


def normalize_prefix(prefix: str) -> str:
    """'/' and '' mount at the root; other prefixes get one leading slash and no trailing one."""
    stripped = prefix.strip("/")
    return f"/{stripped}" if stripped else ""


class EndpointRegistry:
    def __init__(self) -> None:
        self._endpoints: Dict[str, Endpoint] = {}
        self.options: Dict[str, Any] = {}

    def register(
        self,
        name: str,
        prefix: str,
        router: APIRouter,
        setup_hook: Optional[SetupHook] = None,
        abstract: bool = False,
    ) -> Endpoint:
        prefix = normalize_prefix(prefix)
        existing = self._endpoints.get(name)
        if existing is not None:
            # What: same router under the same prefix again (a retried setup) is a no-op
            if existing.router is router and existing.prefix == prefix:
                return existing
            raise ConfigurationError(f"Endpoint '{name}' is already registered")
        endpoint = Endpoint(
            name=name,
            prefix=prefix,
            router=router,
            setup_hook=setup_hook,
            abstract=abstract,
        )
        self._endpoints[name] = endpoint
        return endpoint

    def configure(self, **options: Any) -> None:
        """Endpoint-wide options, visible to handlers as app.state.endpoint_options."""
        self.options.update(options)

    def __iter__(self) -> Iterator[Endpoint]:
        return iter(self._endpoints.values())

    def __len__(self) -> int:
        return len(self._endpoints)

    def __contains__(self, name: str) -> bool:
        return name in self._endpoints

    def mountable(self) -> List[Endpoint]:
        return [e for e in self if not e.abstract]

    def run_setup_hooks(self, config: Settings) -> None:
        for endpoint in self:
            if endpoint.setup_hook is not None:
                logger.debug("Setting up endpoint %s", endpoint.name)
                endpoint.setup_hook(config)

    def mount(self, app: FastAPI) -> None:
        for endpoint in self.mountable():
            # Registration order is mounting order; first match wins on overlap
            app.include_router(endpoint.router, prefix=endpoint.prefix)
        app.state.endpoint_options = dict(self.options)


registry = EndpointRegistry()
