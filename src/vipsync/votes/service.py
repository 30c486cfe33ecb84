"""Vote lifecycle: webhook ingestion and one-time reward collection.

    ingest        voted=True, collected=False   (dedup window applies)
    get_status    voted=False, collected=True   (once per vote)
    reset timer   voted=False, collected=False  (voted_at + 12h)
"""

from __future__ import annotations

import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.database import commit_or_raise
from vipsync.errors import Unauthorized, ValidationError
from vipsync.locks import KeyedLock, user_locks
from vipsync.notifications.notifier import NotificationDispatcher, vote_message
from vipsync.votes import store
from vipsync.votes.dedup import VoteDedupGate
from vipsync.votes.scheduler import VoteResetScheduler

logger = logging.getLogger(__name__)


def vote_lock_key(user_id: str) -> str:
    return f"vote:{user_id}"


@dataclass(frozen=True)
class VoteEvent:
    user_id: str
    kind: str | None = None
    query: Any = None
    bot: str | None = None
    is_weekend: bool = False


@dataclass(frozen=True)
class IngestResult:
    ignored: bool


@dataclass(frozen=True)
class VoteStatus:
    has_voted: bool
    has_collected: bool
    kind: str | None = None
    query: str | None = None


def encode_query(query: Any) -> str | None:
    """Query objects are stored JSON-encoded, strings as-is."""
    if query is None or isinstance(query, str):
        return query
    return json.dumps(query)


class VoteService:
    def __init__(
        self,
        gate: VoteDedupGate,
        scheduler: VoteResetScheduler,
        webhook_secret: str,
        dispatcher: NotificationDispatcher | None = None,
        locks: KeyedLock = user_locks,
    ) -> None:
        self.gate = gate
        self.scheduler = scheduler
        self.webhook_secret = webhook_secret
        self.dispatcher = dispatcher
        self.locks = locks

    def authorize(self, secret: str | None) -> None:
        if not self.webhook_secret or secret is None:
            raise Unauthorized()
        if not hmac.compare_digest(secret.encode(), self.webhook_secret.encode()):
            raise Unauthorized()

    async def ingest(
        self,
        db: AsyncSession,
        secret: str | None,
        event: VoteEvent,
        now: datetime | None = None,
    ) -> IngestResult:
        self.authorize(secret)
        if not event.user_id:
            raise ValidationError("User ID is required")
        if now is None:
            now = datetime.now(timezone.utc)
        ts = now.timestamp()

        async with self.locks.hold(vote_lock_key(event.user_id)):
            if self.gate.is_suppressed(event.user_id, ts):
                logger.info("Ignoring duplicate vote for user %s", event.user_id)
                return IngestResult(ignored=True)

            await store.upsert_vote(db, event.user_id, event.kind, encode_query(event.query), now)
            await commit_or_raise(db, "vote ingest")
            self.gate.record(event.user_id, ts)

        self.scheduler.schedule(event.user_id, now)
        logger.info("Vote registered for user %s (type=%s)", event.user_id, event.kind)
        if self.dispatcher is not None:
            self.dispatcher.fire(vote_message(event.user_id))
        return IngestResult(ignored=False)

    async def get_status(self, db: AsyncSession, user_id: str) -> VoteStatus:
        """Report the vote state, consuming an uncollected vote.

        The returned state is the one read before collection, so the first
        caller after a vote sees ``has_voted=True`` exactly once.
        """
        if not user_id:
            raise ValidationError("User ID is required")

        async with self.locks.hold(vote_lock_key(user_id)):
            record = await store.get_vote(db, user_id)
            if record is None:
                return VoteStatus(has_voted=False, has_collected=False)

            status = VoteStatus(
                has_voted=record.has_voted,
                has_collected=record.has_collected,
                kind=record.kind,
                query=record.query,
            )
            if not (record.has_voted and not record.has_collected):
                return status

            collected = await store.mark_collected(db, user_id)
            await commit_or_raise(db, "vote collect")
            if collected:
                logger.info("Vote reward collected by user %s", user_id)
                return status

            # Lost to a reader in another process
            await db.refresh(record)
            return VoteStatus(
                has_voted=record.has_voted,
                has_collected=record.has_collected,
                kind=record.kind,
                query=record.query,
            )
