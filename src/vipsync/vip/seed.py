"""Default VIP tier catalog."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.db.models import VipTier

logger = logging.getLogger(__name__)

TIER_SEED_DATA: list[dict] = [
    {
        "id": "vip-bronze",
        "name": "Bronze",
        "price": Decimal("9.90"),
        "duration_days": 30,
        "reward_coins": 5_000,
    },
    {
        "id": "vip-silver",
        "name": "Silver",
        "price": Decimal("19.90"),
        "duration_days": 30,
        "reward_coins": 12_000,
    },
    {
        "id": "vip-gold",
        "name": "Gold",
        "price": Decimal("34.90"),
        "duration_days": 30,
        "reward_coins": 25_000,
    },
    {
        "id": "vip-gold-quarterly",
        "name": "Gold Quarterly",
        "price": Decimal("89.90"),
        "duration_days": 90,
        "reward_coins": 80_000,
    },
]


async def seed_tiers(db: AsyncSession, tiers: list[dict] | None = None) -> int:
    """Insert catalog tiers that do not exist yet. Returns number of tiers inserted.

    Existing rows are left alone: tiers are immutable once published.
    """
    data = TIER_SEED_DATA if tiers is None else tiers
    existing = set((await db.execute(select(VipTier.id))).scalars().all())

    inserted = 0
    for tier_data in data:
        if tier_data["id"] in existing:
            continue
        db.add(VipTier(**tier_data))
        inserted += 1

    await db.commit()
    if inserted:
        logger.info("Seeded %d VIP tiers", inserted)
    return inserted
