# Routes package init
"""
Travis API — Endpoint Registration
====================================

What:  Registers every endpoint router with the endpoint registry.
Why:   Registration is explicit: the list below is the complete set of
       endpoints the bootstrap mounts, in mounting order.

Route Inventory:
    - home.py:     GET /          (API root)
    - health.py:   GET /health    (platform health check)
    - metrics.py:  GET /metrics   (Prometheus exposition, optional)
"""

from travis_api.config import Settings
from travis_api.endpoints import EndpointRegistry
from travis_api.routes import health, home, metrics


def load_endpoints(registry: EndpointRegistry, config: Settings) -> None:
    registry.register("home", "/", home.router)
    registry.register("health", "/health", health.router)
    if config.enable_metrics_endpoint:
        registry.register("metrics", "/metrics", metrics.router)
