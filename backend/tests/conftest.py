"""
Chirpline Backend — Test Configuration (conftest.py)
======================================================

Shared fixtures for the whole suite.

Fixture Overview:
    make_settings:  Settings factory pinned to SQLite and a temp asset root
    dist_dir:       A fake frontend build (index.html + app.js)
    echo_routers:   Route-group routers that echo the parsed RequestContext
    group_calls:    Which groups the echo routers were reached through
    app / client:   Development-mode app with the echo routers, plus an
                    HTTPX AsyncClient bound to it via ASGITransport
"""

import os
from typing import Dict, List

import pytest
import pytest_asyncio
from fastapi import APIRouter, Depends, Request
from httpx import ASGITransport, AsyncClient

# Keep the developer's shell and .env out of the tests
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["NODE_ENV"] = "development"
for _name in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET", "APP_ENV"):
    os.environ.pop(_name, None)

from chirpline.config import Settings  # noqa: E402
from chirpline.context import RequestContext, get_request_context  # noqa: E402
from chirpline.main import create_app  # noqa: E402
from chirpline.routing import DEFAULT_PREFIXES  # noqa: E402

GROUP_NAMES = [name for name, _ in DEFAULT_PREFIXES]


@pytest.fixture
def dist_dir(tmp_path):
    """A built SPA: entry document plus one script asset."""
    dist = tmp_path / "dist"
    (dist / "assets").mkdir(parents=True)
    (dist / "index.html").write_text("<!doctype html><div id=\"root\"></div>")
    (dist / "app.js").write_text("console.log('chirp');")
    (dist / "assets" / "logo.svg").write_text("<svg></svg>")
    return dist


@pytest.fixture
def make_settings(tmp_path):
    """Build Settings with test-safe defaults; keyword overrides win."""

    def _make(**overrides) -> Settings:
        values = {
            "database_url": "sqlite+aiosqlite:///:memory:",
            "client_dist_dir": str(tmp_path / "dist"),
            "log_level": "WARNING",
            "environment": "development",
            "db_connect_attempts": 1,
            "db_connect_min_wait": 0,
            "db_connect_max_wait": 0,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def group_calls() -> List[str]:
    return []


def _echo_router(name: str, calls: List[str]) -> APIRouter:
    router = APIRouter()

    @router.api_route("/echo", methods=["GET", "POST", "PUT"])
    async def echo(ctx: RequestContext = Depends(get_request_context)):
        calls.append(name)
        return {
            "group": name,
            "method": ctx.method,
            "path": ctx.path,
            "body": ctx.body,
            "cookies": ctx.cookies,
        }

    @router.post("/raw")
    async def raw(request: Request, ctx: RequestContext = Depends(get_request_context)):
        calls.append(name)
        return {"raw": (await request.body()).decode(), "body": ctx.body}

    @router.get("")
    async def root():
        calls.append(name)
        return {"group": name, "root": True}

    return router


@pytest.fixture
def echo_routers(group_calls) -> Dict[str, APIRouter]:
    return {name: _echo_router(name, group_calls) for name in GROUP_NAMES}


@pytest.fixture
def app(make_settings, echo_routers):
    return create_app(make_settings(), route_groups=echo_routers)


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
