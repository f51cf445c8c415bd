"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any ``throttle`` import so the global
settings never point at a real Redis or read a developer .env file.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Iterable

import fakeredis
import pytest
from starlette.requests import Request


@pytest.fixture
def redis_client() -> fakeredis.FakeAsyncRedis:
    """Isolated in-process Redis that executes Lua scripts."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())


def make_request(
    path: str = "/",
    *,
    headers: dict[str, str] | None = None,
    client: tuple[str, int] | None = ("1.2.3.4", 50000),
    method: str = "GET",
    session: dict | None = None,
) -> Request:
    """Build a bare Starlette request for key extractor and middleware tests."""
    raw_headers: Iterable[tuple[bytes, bytes]] = [
        (name.lower().encode(), value.encode()) for name, value in (headers or {}).items()
    ]
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "scheme": "http",
        "query_string": b"",
        "headers": list(raw_headers),
        "client": client,
        "server": ("testserver", 80),
    }
    if session is not None:
        scope["session"] = session
    return Request(scope)
