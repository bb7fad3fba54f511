"""
Travis API — Request Filter Tests
===================================

What we test:
    ✅ Deny-listed client gets 420 Enhance Your Calm and never reaches an endpoint
    ✅ Other clients pass through unchanged
    ✅ Named predicates, first match wins
    ✅ 420 reason phrase registered with the serving stack
    ✅ Optional sliding window throttle (429 + Retry-After)
    ✅ Client address and scheme taken from trusted proxy headers
"""

import time

import pytest
from starlette.requests import Request

from travis_api.main import build_app
from travis_api.middleware.request_filters import (
    BLOCKED_PHRASE,
    RequestFilterMiddleware,
    RequestFilters,
    build_request_filters,
    reason_phrase,
)

BLOCKED_IP = "130.15.4.210"


def make_request(ip="10.0.0.1", headers=None):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (ip, 1234),
    }
    return Request(scope)


class TestBlacklist:
    @pytest.mark.asyncio
    async def test_blocked_client_gets_420(self, make_settings, downstream, client_for):
        app = build_app(make_settings(blocked_ips=BLOCKED_IP), downstream.registry)
        async with client_for(app, client=(BLOCKED_IP, 5555)) as client:
            response = await client.get("/check_cors")

        assert response.status_code == 420
        assert response.text == "Enhance Your Calm"
        assert response.headers["content-type"].startswith("text/plain")
        assert downstream.calls == []

    @pytest.mark.asyncio
    async def test_blocked_before_cors_preflight(self, make_settings, downstream, client_for):
        app = build_app(make_settings(blocked_ips=BLOCKED_IP), downstream.registry)
        async with client_for(app, client=(BLOCKED_IP, 5555)) as client:
            response = await client.options("/check_cors")

        assert response.status_code == 420
        assert "Access-Control-Allow-Origin" not in response.headers

    @pytest.mark.asyncio
    async def test_other_clients_pass(self, make_settings, downstream, client_for):
        app = build_app(make_settings(blocked_ips=BLOCKED_IP), downstream.registry)
        async with client_for(app, client=("10.1.2.3", 5555)) as client:
            response = await client.get("/check_cors")

        assert response.status_code == 200
        assert downstream.calls == ["check_cors"]

    def test_reason_phrase_registered(self, make_settings):
        build_request_filters(make_settings())
        assert reason_phrase(420) == "Enhance Your Calm"
        assert reason_phrase(404) == "Not Found"

    def test_uvicorn_status_line_patched(self, make_settings):
        from uvicorn.protocols.http import h11_impl

        build_request_filters(make_settings())
        assert h11_impl.STATUS_PHRASES[420] == BLOCKED_PHRASE.encode()


class TestRequestFilters:
    def test_no_predicates_without_configured_ips(self, make_settings):
        filters = build_request_filters(make_settings(blocked_ips=""))
        assert filters.blacklist_names == []
        assert filters.blocked_by(make_request()) is None

    def test_configured_ips_predicate(self, make_settings):
        filters = build_request_filters(make_settings(blocked_ips=f" {BLOCKED_IP}, 10.9.9.9 "))
        assert filters.blacklist_names == ["block configured client addresses"]
        assert filters.blocked_by(make_request(ip="10.9.9.9")) == "block configured client addresses"
        assert filters.blocked_by(make_request(ip="10.9.9.8")) is None

    def test_decorator_registration_and_order(self):
        filters = RequestFilters()

        @filters.blacklist("block ruby scrapers")
        def _ruby(request):
            return request.headers.get("user-agent", "").startswith("Ruby")

        filters.blacklist("block everything", lambda request: True)

        assert filters.blacklist_names == ["block ruby scrapers", "block everything"]
        assert filters.blocked_by(make_request(headers={"User-Agent": "Ruby/2.1"})) == "block ruby scrapers"
        assert filters.blocked_by(make_request(headers={"User-Agent": "curl"})) == "block everything"


class TestThrottle:
    @pytest.mark.asyncio
    async def test_throttle_after_budget(self, make_settings, downstream, client_for):
        app = build_app(make_settings(rate_limit_requests=2, rate_limit_window=60), downstream.registry)
        async with client_for(app) as client:
            first = await client.get("/check_cors")
            second = await client.get("/check_cors")
            third = await client.get("/check_cors")

        assert first.status_code == 200
        assert second.status_code == 200
        assert third.status_code == 429
        assert 1 <= int(third.headers["Retry-After"]) <= 61
        assert third.json()["error"] == "rate_limit_exceeded"
        assert downstream.calls == ["check_cors", "check_cors"]

    @pytest.mark.asyncio
    async def test_throttle_disabled_by_default(self, make_settings, downstream, client_for):
        app = build_app(make_settings(), downstream.registry)
        async with client_for(app) as client:
            for _ in range(5):
                response = await client.get("/check_cors")
                assert response.status_code == 200

    def test_idle_addresses_pruned_on_request_count(self):
        middleware = RequestFilterMiddleware(
            app=None, filters=RequestFilters(throttle_limit=1, throttle_window=60)
        )
        middleware.cleanup_every = 3
        middleware._requests["10.0.0.1"] = [time.time() - 3600]

        assert middleware._throttle("10.0.0.2") is None
        assert middleware._throttle("10.0.0.2").status_code == 429
        assert "10.0.0.1" in middleware._requests

        # Third request, throttled one included, triggers the sweep
        middleware._throttle("10.0.0.3")
        assert "10.0.0.1" not in middleware._requests
        assert "10.0.0.2" in middleware._requests


class TestProxyHeaders:
    ROUTER = ("10.0.0.7", 4000)

    @pytest.mark.asyncio
    async def test_forwarded_https_not_redirected(self, make_settings, downstream, client_for):
        config = make_settings(environment="production", forwarded_allow_ips="10.0.0.7")
        app = build_app(config, downstream.registry)
        async with client_for(app, client=self.ROUTER) as client:
            response = await client.get("/check_cors", headers={"X-Forwarded-Proto": "https"})

        assert response.status_code == 200
        assert response.text == "ok"

    @pytest.mark.asyncio
    async def test_plain_http_still_redirected(self, make_settings, downstream, client_for):
        config = make_settings(environment="production", forwarded_allow_ips="10.0.0.7")
        app = build_app(config, downstream.registry)
        async with client_for(app, client=self.ROUTER) as client:
            response = await client.get("/check_cors")

        assert response.status_code == 307
        assert response.headers["location"].startswith("https://")
        assert downstream.calls == []

    @pytest.mark.asyncio
    async def test_forwarded_client_blocked(self, make_settings, downstream, client_for):
        config = make_settings(blocked_ips=BLOCKED_IP, forwarded_allow_ips="10.0.0.7")
        app = build_app(config, downstream.registry)
        async with client_for(app, client=self.ROUTER) as client:
            response = await client.get("/check_cors", headers={"X-Forwarded-For": BLOCKED_IP})

        assert response.status_code == 420
        assert downstream.calls == []

    @pytest.mark.asyncio
    async def test_untrusted_peer_cannot_spoof(self, make_settings, downstream, client_for):
        config = make_settings(blocked_ips="10.9.9.9", forwarded_allow_ips="10.0.0.7")
        app = build_app(config, downstream.registry)
        async with client_for(app, client=("10.9.9.9", 4000)) as client:
            response = await client.get("/check_cors", headers={"X-Forwarded-For": "10.1.1.1"})

        assert response.status_code == 420
