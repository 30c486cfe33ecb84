"""arq worker for the daily VIP expiry sweep.

Usage:
    arq vipsync.workers.sweeper.SweeperWorkerSettings   # scheduled
    python -m vipsync.workers.sweeper                   # one-shot run
"""

from __future__ import annotations

import asyncio
import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from vipsync.config import get_settings
from vipsync.database import close_db, get_session_factory, init_db
from vipsync.notifications.notifier import NotificationDispatcher, build_notifier
from vipsync.payments.gateway import build_gateway
from vipsync.redis_client import create_redis
from vipsync.singleflight import SingleFlight
from vipsync.vip.sweeper import ExpirySweeper, SweepResult

logger = logging.getLogger(__name__)


async def run_expiry_sweep(
    sweeper: ExpirySweeper,
    guard: SingleFlight,
    threshold_days: int | None = None,
) -> SweepResult | None:
    """Run one sweep unless another is already in flight. Returns None when skipped."""
    async with guard.acquire() as acquired:
        if not acquired:
            logger.info("Expiry sweep already running, skipped")
            return None
        return await sweeper.run(threshold_days=threshold_days)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize database, Redis and the sweeper on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)

    redis_client = create_redis(settings.redis_url, max_connections=4)
    dispatcher = NotificationDispatcher(build_notifier(settings))

    ctx["redis_client"] = redis_client
    ctx["dispatcher"] = dispatcher
    ctx["guard"] = SingleFlight(redis_client, ttl_seconds=settings.sweep_lock_ttl_seconds)
    ctx["sweeper"] = ExpirySweeper(
        get_session_factory(),
        build_gateway(settings),
        dispatcher,
        threshold_days=settings.sweep_threshold_days,
    )
    logger.info("Expiry sweep worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    dispatcher: NotificationDispatcher | None = ctx.get("dispatcher")
    if dispatcher:
        await dispatcher.drain()

    redis_client: aioredis.Redis | None = ctx.get("redis_client")
    if redis_client:
        await redis_client.aclose()

    await close_db()
    logger.info("Expiry sweep worker shut down")


async def expiry_sweep(ctx: dict) -> dict | None:  # type: ignore[type-arg]
    """Cron task: daily sweep of expiring VIP entitlements."""
    result = await run_expiry_sweep(ctx["sweeper"], ctx["guard"])
    return result.to_dict() if result is not None else None


_settings = get_settings()


class SweeperWorkerSettings:
    """arq worker settings for the expiry sweep."""

    functions = [expiry_sweep]
    cron_jobs = [
        cron(expiry_sweep, hour=_settings.sweep_cron_hour, minute=_settings.sweep_cron_minute, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(_settings.redis_url)
    max_jobs = 1
    job_timeout = _settings.sweep_lock_ttl_seconds


async def main() -> None:
    """Run a single sweep and exit."""
    ctx: dict = {}  # type: ignore[type-arg]
    await startup(ctx)
    try:
        result = await expiry_sweep(ctx)
        logger.info("One-shot sweep result: %s", result)
    finally:
        await shutdown(ctx)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    asyncio.run(main())
