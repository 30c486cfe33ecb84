"""Vote record store: one row per external user."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.db.models import VoteRecord


async def get_vote(db: AsyncSession, user_id: str) -> VoteRecord | None:
    result = await db.execute(select(VoteRecord).where(VoteRecord.user_id == user_id))
    return result.scalar_one_or_none()


async def upsert_vote(
    db: AsyncSession,
    user_id: str,
    kind: str | None,
    query: str | None,
    voted_at: datetime,
) -> VoteRecord:
    """Record a fresh vote: voted, not yet collected."""
    record = await get_vote(db, user_id)
    if record is None:
        record = VoteRecord(user_id=user_id)
        db.add(record)
    record.has_voted = True
    record.has_collected = False
    record.kind = kind
    record.query = query
    record.voted_at = voted_at
    await db.flush()
    return record


async def mark_collected(db: AsyncSession, user_id: str) -> bool:
    """Consume an uncollected vote. False if another reader got there first."""
    result = await db.execute(
        update(VoteRecord)
        .where(
            VoteRecord.user_id == user_id,
            VoteRecord.has_voted.is_(True),
            VoteRecord.has_collected.is_(False),
        )
        .values(has_voted=False, has_collected=True)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


async def clear_if_current(db: AsyncSession, user_id: str, voted_at: datetime) -> bool:
    """Reset both flags, unless a newer vote replaced the one at ``voted_at``."""
    result = await db.execute(
        update(VoteRecord)
        .where(VoteRecord.user_id == user_id, VoteRecord.voted_at == voted_at)
        .values(has_voted=False, has_collected=False)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1
