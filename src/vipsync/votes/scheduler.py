"""Delayed vote reset timers.

One asyncio task per user sleeps until ``voted_at + delay`` and then clears
the record, provided the vote it was scheduled for is still the current one.
Scheduling again for the same user cancels the earlier timer.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vipsync.database import commit_or_raise
from vipsync.votes import store

logger = logging.getLogger(__name__)


class VoteResetScheduler:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], delay_seconds: float = 43200.0) -> None:
        self.session_factory = session_factory
        self.delay_seconds = delay_seconds
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def schedule(self, user_id: str, voted_at: datetime) -> None:
        previous = self._tasks.pop(user_id, None)
        if previous is not None:
            previous.cancel()
        task = asyncio.create_task(self._run(user_id, voted_at))
        self._tasks[user_id] = task
        task.add_done_callback(lambda t, uid=user_id: self._forget(uid, t))

    def _forget(self, user_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(user_id) is task:
            del self._tasks[user_id]

    async def _run(self, user_id: str, voted_at: datetime) -> None:
        await asyncio.sleep(self.delay_seconds)
        try:
            await self.clear(user_id, voted_at)
        except Exception:
            logger.exception("Vote reset failed for user %s", user_id)

    async def clear(self, user_id: str, voted_at: datetime) -> bool:
        async with self.session_factory() as db:
            cleared = await store.clear_if_current(db, user_id, voted_at)
            await commit_or_raise(db, "vote reset")
        if cleared:
            logger.info("Vote reset for user %s", user_id)
        else:
            logger.info("Vote reset for user %s skipped: superseded by a newer vote", user_id)
        return cleared

    async def close(self) -> None:
        """Cancel every pending timer."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)
