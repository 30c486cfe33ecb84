"""Entitlement store: per-user VIP state.

Writes that can race with another writer are conditional updates:
deactivation only applies if the expiry the caller read is still current,
and clearing a renewal request only applies to the transaction it names.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.db.models import NO_EXPIRY, NO_TIER, Entitlement, VipTier


async def get_entitlement(db: AsyncSession, user_id: str) -> Entitlement | None:
    result = await db.execute(select(Entitlement).where(Entitlement.user_id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_entitlement(db: AsyncSession, user_id: str) -> Entitlement:
    """Get or create the entitlement row for a user."""
    ent = await get_entitlement(db, user_id)
    if ent is None:
        ent = Entitlement(
            user_id=user_id,
            is_vip=False,
            tier_name=NO_TIER,
            expiry_instant=NO_EXPIRY,
            auto_renew=False,
            reward_balance=0,
            updated_at=datetime.now(timezone.utc),
        )
        db.add(ent)
        await db.flush()
    return ent


async def grant(
    db: AsyncSession,
    user_id: str,
    tier: VipTier,
    expiry_instant: int,
    now: datetime | None = None,
) -> Entitlement:
    """Activate the tier until ``expiry_instant`` and credit the tier's reward coins.

    The reward is incremented in SQL so concurrent grants never lose coins.
    Any pending renewal request is settled by the grant.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    ent = await get_or_create_entitlement(db, user_id)

    await db.execute(
        update(Entitlement)
        .where(Entitlement.user_id == user_id)
        .values(
            is_vip=True,
            tier_name=tier.name,
            expiry_instant=expiry_instant,
            reward_balance=Entitlement.reward_balance + tier.reward_coins,
            renewal_transaction_id=None,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    await db.refresh(ent)
    return ent


async def deactivate(
    db: AsyncSession,
    user_id: str,
    expected_expiry: int,
    now: datetime | None = None,
) -> bool:
    """Revoke VIP if the entitlement is still active with ``expected_expiry``.

    Returns False when the row changed since it was read (already revoked,
    or renewed in the meantime). ``reward_balance`` is never touched.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    result = await db.execute(
        update(Entitlement)
        .where(
            Entitlement.user_id == user_id,
            Entitlement.is_vip.is_(True),
            Entitlement.expiry_instant == expected_expiry,
        )
        .values(
            is_vip=False,
            tier_name=NO_TIER,
            expiry_instant=NO_EXPIRY,
            renewal_transaction_id=None,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


async def set_auto_renew(db: AsyncSession, user_id: str, enabled: bool) -> Entitlement:
    ent = await get_or_create_entitlement(db, user_id)
    ent.auto_renew = enabled
    ent.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return ent


async def find_expiring(db: AsyncSession, threshold_instant: int) -> list[Entitlement]:
    """Active entitlements expiring at or before ``threshold_instant``, soonest first."""
    result = await db.execute(
        select(Entitlement)
        .where(
            Entitlement.is_vip.is_(True),
            Entitlement.expiry_instant <= threshold_instant,
        )
        .order_by(Entitlement.expiry_instant.asc(), Entitlement.user_id.asc())
    )
    return list(result.scalars().all())


async def mark_renewal_requested(db: AsyncSession, user_id: str, transaction_id: str) -> None:
    await db.execute(
        update(Entitlement)
        .where(Entitlement.user_id == user_id)
        .values(renewal_transaction_id=transaction_id, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session="fetch")
    )


async def clear_renewal_request(db: AsyncSession, user_id: str, transaction_id: str) -> bool:
    """Drop the pending-renewal marker if it still points at ``transaction_id``."""
    result = await db.execute(
        update(Entitlement)
        .where(
            Entitlement.user_id == user_id,
            Entitlement.renewal_transaction_id == transaction_id,
        )
        .values(renewal_transaction_id=None, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1
