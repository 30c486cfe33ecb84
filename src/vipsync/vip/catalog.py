"""Read-only VIP tier catalog."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.db.models import VipTier


class TierCatalog:
    """Looks up tiers by id or by the name stored on entitlements."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_tier_by_id(self, tier_id: str) -> VipTier | None:
        result = await self.db.execute(select(VipTier).where(VipTier.id == tier_id))
        return result.scalar_one_or_none()

    async def get_tier_by_name(self, name: str) -> VipTier | None:
        result = await self.db.execute(select(VipTier).where(VipTier.name == name))
        return result.scalar_one_or_none()

    async def list_tiers(self) -> list[VipTier]:
        """All tiers, cheapest first."""
        result = await self.db.execute(select(VipTier).order_by(VipTier.price.asc(), VipTier.id.asc()))
        return list(result.scalars().all())
