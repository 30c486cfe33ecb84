"""Single-flight guard for the expiry sweep.

A process-local asyncio lock keeps overlapping triggers in one process
apart; a Redis lock with a TTL does the same across processes. Either
being held means the caller skips the run rather than waiting.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import LockError

logger = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "vipsync:sweep:lock"


class SingleFlight:
    def __init__(
        self,
        redis_client: aioredis.Redis | None = None,
        key: str = SWEEP_LOCK_KEY,
        ttl_seconds: int = 3600,
    ) -> None:
        self.redis = redis_client
        self.key = key
        self.ttl_seconds = ttl_seconds
        self._local = asyncio.Lock()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[bool]:
        """Yield True if this caller owns the run, False if another run holds it."""
        if self._local.locked():
            yield False
            return

        async with self._local:
            if self.redis is None:
                yield True
                return

            lock = self.redis.lock(self.key, timeout=self.ttl_seconds, blocking=False)
            if not await lock.acquire():
                logger.info("Sweep lock %s held elsewhere, skipping", self.key)
                yield False
                return
            try:
                yield True
            finally:
                try:
                    await lock.release()
                except LockError:
                    logger.warning("Sweep lock %s expired before release", self.key)
