# Middleware package init
"""
Travis API — Middleware Package
=================================

What:  Cross-cutting concerns applied to every request.
Why:   Each concern is one independent stage; travis_api.pipeline decides
       which stages run and in which order.

Middleware Chain (outermost first, order matters!):
    Request → [Error Fallback] → [Proxy Headers] → [Request Context] → [Request Filters]
            → [CORS] → [Sentry] → [Path Traversal] → [TLS] → [Response Cache]
            → [GZip] → [Body Parser] → [JSONP] → [Script Name]
            → [Access Log] → [Metrics] → Endpoint

    Why this order:
    1. Error Fallback FIRST: nothing escapes it in production
    2. Proxy Headers: real client address and scheme for everything below
    3. Request Context: start timestamp and request id for everything below
    4. Request Filters: blocked clients cost one predicate check
    5. CORS: preflight answered before any security or cache work
    6. Security (path traversal, TLS) before the cache can serve anything
    7. Cache before compression and business logic
    8. Stages inside GZip are pure ASGI, so a response reaches it in one
       piece and GZIP_MINIMUM_SIZE applies

    The order is reversed for responses (LIFO).
"""
