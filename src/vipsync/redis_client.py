"""Redis clients: a shared pool for the API, standalone clients for workers."""

import redis.asyncio as redis

_pool: redis.Redis | None = None


def create_redis(url: str, max_connections: int = 20) -> redis.Redis:
    """Build a client. The caller owns it and must ``aclose()`` it."""
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def init_redis(url: str) -> None:
    global _pool  # noqa: PLW0603
    _pool = create_redis(url)


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """The API's shared client (rate limiter, readiness probe)."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool
