"""Entitlement status queries and auto-renew preference."""

from __future__ import annotations

import time
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.database import commit_or_raise
from vipsync.db.models import NO_EXPIRY, NO_TIER, Entitlement
from vipsync.locks import KeyedLock, user_locks
from vipsync.vip import store
from vipsync.vip.activation import SECONDS_PER_DAY, vip_lock_key


@dataclass(frozen=True)
class EntitlementStatus:
    user_id: str
    is_vip: bool
    tier_name: str
    expiry_instant: int
    days_remaining: int
    auto_renew: bool
    reward_balance: int
    renewal_pending: bool


def days_remaining(expiry_instant: int, now: int) -> int:
    if expiry_instant <= now:
        return 0
    return (expiry_instant - now) // SECONDS_PER_DAY


def _status_from(ent: Entitlement, now: int) -> EntitlementStatus:
    return EntitlementStatus(
        user_id=ent.user_id,
        is_vip=ent.is_vip,
        tier_name=ent.tier_name,
        expiry_instant=ent.expiry_instant,
        days_remaining=days_remaining(ent.expiry_instant, now) if ent.is_vip else 0,
        auto_renew=ent.auto_renew,
        reward_balance=ent.reward_balance,
        renewal_pending=ent.renewal_transaction_id is not None,
    )


async def get_entitlement_status(
    db: AsyncSession, user_id: str, now: int | None = None
) -> EntitlementStatus:
    """Current VIP status. Users without an entitlement row report as inactive."""
    if now is None:
        now = int(time.time())
    ent = await store.get_entitlement(db, user_id)
    if ent is None:
        return EntitlementStatus(
            user_id=user_id,
            is_vip=False,
            tier_name=NO_TIER,
            expiry_instant=NO_EXPIRY,
            days_remaining=0,
            auto_renew=False,
            reward_balance=0,
            renewal_pending=False,
        )
    return _status_from(ent, now)


async def update_auto_renew(
    db: AsyncSession,
    user_id: str,
    enabled: bool,
    locks: KeyedLock = user_locks,
) -> EntitlementStatus:
    async with locks.hold(vip_lock_key(user_id)):
        ent = await store.set_auto_renew(db, user_id, enabled)
        await commit_or_raise(db, "auto-renew update")
    return _status_from(ent, int(time.time()))
