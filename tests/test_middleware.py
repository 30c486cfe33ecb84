"""Middleware tests: request ID, rate limiting, CORS, error handling."""

from typing import Any

import pytest
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from vipsync.middleware import rate_limit


class _CounterPipeline:
    def __init__(self, counters: dict[str, int]) -> None:
        self.counters = counters
        self.ops: list[str] = []

    def incr(self, key: str) -> None:
        self.ops.append(key)

    def expire(self, key: str, seconds: int) -> None:
        pass

    async def execute(self) -> list[Any]:
        key = self.ops[0]
        self.counters[key] = self.counters.get(key, 0) + 1
        return [self.counters[key], True]


class _CounterRedis:
    def __init__(self) -> None:
        self.counters: dict[str, int] = {}

    def pipeline(self) -> _CounterPipeline:
        return _CounterPipeline(self.counters)


class _DownPipeline(_CounterPipeline):
    async def execute(self) -> list[Any]:
        raise RedisConnectionError("Error 111 connecting to localhost:6379")


class _DownRedis(_CounterRedis):
    def pipeline(self) -> _DownPipeline:
        return _DownPipeline(self.counters)


@pytest.fixture
def counter_redis(monkeypatch: pytest.MonkeyPatch) -> _CounterRedis:
    fake = _CounterRedis()
    monkeypatch.setattr(rate_limit, "get_redis", lambda: fake)
    return fake


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert "x-request-id" in response.headers
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_rate_limit_fails_open_without_redis(client: AsyncClient) -> None:
    response = await client.get("/api/v1/vip/tiers")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_fails_open_when_redis_down(client: AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """A Redis outage lets requests through without rate limit headers."""
    monkeypatch.setattr(rate_limit, "get_redis", lambda: _DownRedis())
    response = await client.get("/api/v1/vip/tiers")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_headers(client: AsyncClient, counter_redis: _CounterRedis) -> None:
    """Rate limit headers are present on non-exempt endpoints."""
    response = await client.get("/api/v1/vip/tiers")
    assert response.headers["x-ratelimit-limit"] == "100"
    assert response.headers["x-ratelimit-remaining"] == "99"


@pytest.mark.asyncio
async def test_rate_limit_blocks_excess(client: AsyncClient, counter_redis: _CounterRedis) -> None:
    """101st request in a window returns 429 with Retry-After header."""
    for _ in range(100):
        await client.get("/api/v1/vip/tiers")
    response = await client.get("/api/v1/vip/tiers")
    assert response.status_code == 429
    assert "retry-after" in response.headers
    assert response.json()["code"] == "RATE_LIMITED"


@pytest.mark.asyncio
async def test_webhooks_exempt_from_rate_limit(client: AsyncClient, counter_redis: _CounterRedis) -> None:
    """Provider webhooks are never throttled."""
    for _ in range(110):
        response = await client.post("/api/v1/vote/webhook", json={"user": "42"})
        assert response.status_code == 401
    assert counter_redis.counters == {}


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight returns access-control-allow-origin for configured origin."""
    response = await client.options(
        "/api/v1/vip/tiers",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    """Unknown paths return 404 with JSON body."""
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.headers["content-type"] == "application/json"
    assert response.json()["detail"] == "Not Found"


@pytest.mark.asyncio
async def test_domain_error_body(client: AsyncClient) -> None:
    """Domain errors carry a stable code alongside the message."""
    response = await client.get("/api/v1/transactions/missing")
    assert response.status_code == 404
    data = response.json()
    assert data["code"] == "TRANSACTION_NOT_FOUND"
    assert data["details"] == {"reference": "missing"}


@pytest.mark.asyncio
async def test_validation_error_body(client: AsyncClient) -> None:
    response = await client.post("/api/v1/vip/purchase", json={"userId": "user-1"})
    assert response.status_code == 422
    data = response.json()
    assert data["code"] == "VALIDATION_ERROR"
    assert data["errors"]
