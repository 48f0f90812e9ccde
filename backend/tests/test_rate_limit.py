import asyncio
from collections import deque
from typing import Dict

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from starlette.requests import Request

from app.api.v1 import analytics as analytics_api
from app.core.rate_limit import _enforce_limit, client_identifier, per_identifier_limiter
from app.main import app


def _request(headers: dict[str, str] | None = None, host: str = "10.0.0.1") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/analytics",
        "headers": [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()],
        "client": (host, 1234),
    }
    return Request(scope)


def test_client_identifier_prefers_first_forwarded_hop() -> None:
    assert client_identifier(_request({"X-Forwarded-For": "203.0.113.9, 10.0.0.2"})) == "203.0.113.9"
    assert client_identifier(_request()) == "10.0.0.1"


def test_enforce_limit_rejects_after_limit() -> None:
    bucket: deque = deque()
    _enforce_limit(bucket, 2, 60, now=100.0)
    _enforce_limit(bucket, 2, 60, now=101.0)
    with pytest.raises(HTTPException) as exc:
        _enforce_limit(bucket, 2, 60, now=102.0)
    assert exc.value.status_code == 429
    assert exc.value.headers["Retry-After"] == "58"

    # Old hits fall out of the window.
    _enforce_limit(bucket, 2, 60, now=161.0)


def test_limiter_is_per_identifier() -> None:
    limiter = per_identifier_limiter(client_identifier, 1, 60, key="test:limiter")

    async def run() -> None:
        await limiter(_request(host="10.0.0.1"))
        await limiter(_request(host="10.0.0.2"))
        with pytest.raises(HTTPException):
            await limiter(_request(host="10.0.0.1"))

    asyncio.run(run())


def test_analytics_ingestion_is_rate_limited(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    limited = per_identifier_limiter(client_identifier, 2, 60, key="analytics:test")

    app.dependency_overrides[analytics_api.analytics_rate_limit] = limited
    payload = {
        "shop": "busy.myshopify.com",
        "productId": "p1",
        "variantId": "v1",
        "productName": "Mug",
        "price": "10.00",
        "placement": "checkout",
    }
    assert client.post("/api/analytics", json=payload).status_code == 200
    assert client.post("/api/analytics", json=payload).status_code == 200

    blocked = client.post("/api/analytics", json=payload)
    assert blocked.status_code == 429
    assert blocked.headers.get("Retry-After")
    assert blocked.headers.get("access-control-allow-origin") == "*"
    assert blocked.json()["detail"] == "Too many requests"
