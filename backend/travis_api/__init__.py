"""
Travis API — Request Pipeline Package
=======================================

What:  Bootstrap and middleware composition for the Travis CI HTTP API.

    ┌──────────────────────────────────────────┐
    │   main.create_app()                      │  ← builds the ASGI app
    ├──────────────────────────────────────────┤
    │   bootstrap (one-time process setup)     │  ← DB, queues, monitoring
    ├──────────────────────────────────────────┤
    │   pipeline (ordered middleware stages)   │  ← cross-cutting concerns
    ├──────────────────────────────────────────┤
    │   endpoints (prefix → router registry)   │  ← business endpoints
    └──────────────────────────────────────────┘
"""

__version__ = "1.0.0"
