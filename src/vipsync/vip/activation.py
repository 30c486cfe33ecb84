"""Applies a completed VIP purchase to the user's entitlement."""

from __future__ import annotations

import logging
import time

from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.database import commit_or_raise
from vipsync.db.models import Entitlement, VipTier
from vipsync.errors import TierNotFound
from vipsync.locks import KeyedLock, user_locks
from vipsync.notifications.notifier import NotificationDispatcher, vip_purchase_message
from vipsync.vip import store
from vipsync.vip.catalog import TierCatalog

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


def vip_lock_key(user_id: str) -> str:
    return f"vip:{user_id}"


def compute_expiry(now: int, duration_days: int) -> int:
    """Expiry counted from ``now``. Remaining time on a live entitlement is not carried over."""
    return now + duration_days * SECONDS_PER_DAY


class EntitlementActivation:
    """Grants or renews VIP for a user.

    ``activate`` is the standalone operation (locks, commits, notifies).
    ``apply`` is the building block for callers that already hold the
    user's lock and own the surrounding database transaction, such as
    webhook finalization.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        locks: KeyedLock = user_locks,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.locks = locks
        self.catalog = TierCatalog(db)

    async def activate(self, user_id: str, tier_id: str, now: int | None = None) -> Entitlement:
        async with self.locks.hold(vip_lock_key(user_id)):
            try:
                ent, tier = await self.apply(user_id, tier_id, now)
            except TierNotFound:
                await self.db.rollback()
                raise
            await commit_or_raise(self.db, "entitlement activation")

        self.announce(user_id, tier.name)
        return ent

    async def apply(
        self, user_id: str, tier_id: str | None, now: int | None = None
    ) -> tuple[Entitlement, VipTier]:
        tier = await self.catalog.get_tier_by_id(tier_id) if tier_id else None
        if tier is None:
            raise TierNotFound(tier_id or "")

        if now is None:
            now = int(time.time())
        expiry = compute_expiry(now, tier.duration_days)

        ent = await store.grant(self.db, user_id, tier, expiry)
        logger.info(
            "VIP granted: user=%s tier=%s expiry=%d reward=+%d",
            user_id, tier.name, expiry, tier.reward_coins,
        )
        return ent, tier

    def announce(self, user_id: str, tier_name: str) -> None:
        """Queue the purchase notification. Call only after the grant is committed."""
        if self.dispatcher is not None:
            self.dispatcher.fire(vip_purchase_message(user_id, tier_name))
