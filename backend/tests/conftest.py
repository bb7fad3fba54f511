"""
Travis API — Test Configuration (conftest.py)
===============================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment overrides are set BEFORE any travis_api import, so the
       settings singleton and the module-level app built by travis_api.main
       use a throwaway SQLite database and the "test" environment.

Fixtures:
    make_settings: Settings factory with per-test overrides
    downstream:    Endpoint registry whose routes record every invocation
    client_for:    Opens an httpx AsyncClient against an ASGI app
"""

import os
import tempfile
from contextlib import asynccontextmanager
from typing import List

import pytest
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from httpx import ASGITransport, AsyncClient

_tmp = tempfile.mkdtemp(prefix="travis_api_test_")
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmp}/test.db"
os.environ["DEPLOY_SHA_PATH"] = os.path.join(_tmp, ".deploy-sha")
os.environ["READY_SENTINEL_PATH"] = os.path.join(_tmp, "app-initialized")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("DYNO", None)

from travis_api.config import Settings  # noqa: E402
from travis_api.endpoints import EndpointRegistry  # noqa: E402
from travis_api.exceptions import NotFoundError  # noqa: E402


class Downstream:
    """
    Business endpoints standing in for the real API.

    Every handler appends its name to `calls`, so tests can assert whether
    the pipeline let a request through.
    """

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.router = APIRouter()
        self.registry = EndpointRegistry()
        self._add_routes()
        self.registry.register("downstream", "/", self.router)

    def _add_routes(self) -> None:
        router = self.router
        calls = self.calls

        @router.get("/check_cors")
        async def check_cors():
            calls.append("check_cors")
            return PlainTextResponse("ok")

        @router.post("/check_cors")
        async def check_cors_post():
            calls.append("check_cors_post")
            return PlainTextResponse("created", status_code=201)

        @router.get("/teapot")
        async def teapot():
            calls.append("teapot")
            return PlainTextResponse("short and stout", status_code=418)

        @router.get("/boom")
        async def boom():
            calls.append("boom")
            raise RuntimeError("boom")

        @router.get("/missing-repo")
        async def missing_repo():
            calls.append("missing_repo")
            raise NotFoundError(resource="repository", resource_id="42")

        @router.get("/context")
        async def context(request: Request):
            calls.append("context")
            return {
                "request_start": getattr(request.state, "request_start", None),
                "request_id": getattr(request.state, "request_id", None),
                "global_prefix": getattr(request.state, "global_prefix", None),
                "root_path": request.scope.get("root_path"),
                "path": request.url.path,
            }

        @router.get("/files/{name:path}")
        async def files(name: str):
            calls.append("files")
            return {"name": name}

        @router.post("/params")
        async def params(request: Request):
            calls.append("params")
            raw = await request.body()
            return {"params": request.state.params, "raw_length": len(raw)}

        @router.get("/repos")
        async def repos(request: Request):
            calls.append("repos")
            return JSONResponse(
                {"repos": [{"id": i, "slug": f"travis-ci/repo-{i}"} for i in range(50)]},
                headers={"Cache-Control": "public, max-age=60"},
            )

        @router.get("/private")
        async def private():
            calls.append("private")
            return JSONResponse({"secret": True}, headers={"Cache-Control": "private, max-age=60"})

        @router.get("/badge")
        async def badge():
            calls.append("badge")
            return Response(content="<svg/>", media_type="image/svg+xml")


@pytest.fixture
def make_settings():
    """Settings factory: make_settings(environment="production", ...)."""
    def factory(**overrides) -> Settings:
        return Settings(**overrides)
    return factory


@pytest.fixture
def downstream() -> Downstream:
    return Downstream()


@pytest.fixture
def client_for():
    """
    Usage:
        async with client_for(app, client=("10.0.0.1", 4000)) as client:
            response = await client.get("/check_cors")
    """
    @asynccontextmanager
    async def factory(app, client=("127.0.0.1", 123), base_url="http://test"):
        transport = ASGITransport(app=app, client=client)
        async with AsyncClient(transport=transport, base_url=base_url) as http:
            yield http
    return factory
