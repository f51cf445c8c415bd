"""Tests for request correlation ids on forwarded and rejected responses."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.testclient import TestClient

from throttle.core.app_factory import create_app
from throttle.core.config import LogSettings, RateLimitSettings, Settings


def limited_client(**log) -> TestClient:
    router = APIRouter()

    @router.get("/v1/items")
    async def list_items() -> dict:
        return {"items": []}

    app_settings = Settings(
        log=LogSettings(**log),
        rate_limit=RateLimitSettings(backend="memory", requests=1, period_seconds=60),
    )
    return TestClient(create_app(app_settings, routers=[router], configure_logs=False))


def test_rejection_carries_incoming_request_id():
    client = limited_client()
    client.get("/v1/items")

    resp = client.get("/v1/items", headers={"X-Request-ID": "req-over-limit"})

    assert resp.status_code == 429
    assert resp.headers.get("X-Request-ID") == "req-over-limit"
    assert resp.json()["error"]["request_id"] == "req-over-limit"
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_generated_id_matches_rejection_body():
    client = limited_client()
    client.get("/v1/items")

    resp = client.get("/v1/items")

    generated = resp.headers.get("X-Request-ID")
    assert resp.status_code == 429
    assert generated
    assert resp.json()["error"]["request_id"] == generated


def test_each_request_gets_its_own_id():
    client = limited_client()

    first = client.get("/health").headers.get("X-Request-ID")
    second = client.get("/health").headers.get("X-Request-ID")

    assert first and second
    assert first != second


def test_configured_header_name_is_used():
    client = limited_client(request_id_header="X-Correlation-ID")
    client.get("/v1/items", headers={"X-Correlation-ID": "corr-1"})

    resp = client.get("/v1/items", headers={"X-Correlation-ID": "corr-2"})

    assert resp.status_code == 429
    assert resp.headers.get("X-Correlation-ID") == "corr-2"
    assert "X-Request-ID" not in resp.headers
    assert resp.json()["error"]["request_id"] == "corr-2"
