"""Daily pass over entitlements nearing expiry.

Per entitlement with is_vip and expiry <= now + threshold:

    auto_renew, renewal unpaid, expired  -> deactivate
    auto_renew, renewal unpaid           -> wait (renewal_pending)
    auto_renew                           -> request renewal checkout
    expired                              -> deactivate
    otherwise                            -> nothing this cycle

Requesting a renewal only opens a checkout; the entitlement is extended
when that checkout's webhook completes. Each user is handled in its own
session so one bad record cannot abort the run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vipsync.database import commit_or_raise
from vipsync.errors import TierNotFound
from vipsync.ledger import store as ledger_store
from vipsync.ledger.constants import KIND_VIP, STATUS_PENDING
from vipsync.ledger.workflow import TransactionWorkflow
from vipsync.locks import KeyedLock, user_locks
from vipsync.notifications.notifier import NotificationDispatcher
from vipsync.payments.gateway import PaymentGateway
from vipsync.vip import store as vip_store
from vipsync.vip.activation import SECONDS_PER_DAY, vip_lock_key
from vipsync.vip.catalog import TierCatalog

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_DAYS = 3

ACTION_RENEWAL_REQUESTED = "renewal_requested"
ACTION_RENEWAL_PENDING = "renewal_pending"
ACTION_DEACTIVATED = "deactivated"
ACTION_NONE = "none"


@dataclass(frozen=True)
class ExpiringEntitlement:
    """Snapshot of the fields the sweep decides on."""

    user_id: str
    tier_name: str
    expiry_instant: int
    auto_renew: bool
    renewal_transaction_id: str | None


@dataclass(frozen=True)
class SweepFailure:
    user_id: str
    error: str


@dataclass
class SweepResult:
    renewals_requested: int = 0
    deactivated: int = 0
    renewals_pending: int = 0
    failures: list[SweepFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ExpirySweeper:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        dispatcher: NotificationDispatcher | None = None,
        locks: KeyedLock = user_locks,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.locks = locks
        self.threshold_days = threshold_days

    async def run(self, threshold_days: int | None = None, now: int | None = None) -> SweepResult:
        if now is None:
            now = int(time.time())
        days = self.threshold_days if threshold_days is None else threshold_days
        threshold = now + days * SECONDS_PER_DAY

        async with self.session_factory() as db:
            rows = await vip_store.find_expiring(db, threshold)
            expiring = [
                ExpiringEntitlement(
                    user_id=ent.user_id,
                    tier_name=ent.tier_name,
                    expiry_instant=ent.expiry_instant,
                    auto_renew=ent.auto_renew,
                    renewal_transaction_id=ent.renewal_transaction_id,
                )
                for ent in rows
            ]

        result = SweepResult()
        for ent in expiring:
            try:
                action = await self._process(ent, now)
            except Exception as exc:
                logger.exception("Error processing VIP user %s", ent.user_id)
                result.failures.append(SweepFailure(user_id=ent.user_id, error=str(exc)))
                continue

            if action == ACTION_RENEWAL_REQUESTED:
                result.renewals_requested += 1
            elif action == ACTION_RENEWAL_PENDING:
                result.renewals_pending += 1
            elif action == ACTION_DEACTIVATED:
                result.deactivated += 1

        logger.info(
            "VIP sweep complete: scanned=%d renewals_requested=%d renewals_pending=%d deactivated=%d failures=%d",
            len(expiring), result.renewals_requested, result.renewals_pending,
            result.deactivated, len(result.failures),
        )
        return result

    async def _process(self, ent: ExpiringEntitlement, now: int) -> str:
        async with self.session_factory() as db:
            if ent.auto_renew:
                if await self._renewal_in_flight(db, ent):
                    if ent.expiry_instant < now:
                        return await self._deactivate(db, ent)
                    return ACTION_RENEWAL_PENDING
                return await self._request_renewal(db, ent)

            if ent.expiry_instant < now:
                return await self._deactivate(db, ent)
            return ACTION_NONE

    async def _renewal_in_flight(self, db: AsyncSession, ent: ExpiringEntitlement) -> bool:
        if ent.renewal_transaction_id is None:
            return False
        tx = await ledger_store.get_transaction(db, ent.renewal_transaction_id)
        return tx is not None and tx.status == STATUS_PENDING

    async def _still_due(self, db: AsyncSession, ent: ExpiringEntitlement) -> bool:
        """True if the row still matches the snapshot taken at scan time."""
        async with self.locks.hold(vip_lock_key(ent.user_id)):
            current = await vip_store.get_entitlement(db, ent.user_id)
        return (
            current is not None
            and current.is_vip
            and current.auto_renew
            and current.tier_name == ent.tier_name
            and current.expiry_instant == ent.expiry_instant
            and current.renewal_transaction_id == ent.renewal_transaction_id
        )

    async def _request_renewal(self, db: AsyncSession, ent: ExpiringEntitlement) -> str:
        if not await self._still_due(db, ent):
            logger.info("Skipped renewal for user %s: entitlement changed since read", ent.user_id)
            return ACTION_NONE

        tier = await TierCatalog(db).get_tier_by_name(ent.tier_name)
        if tier is None:
            raise TierNotFound(ent.tier_name)

        workflow = TransactionWorkflow(db, self.gateway, self.dispatcher, self.locks)
        opened = await workflow.open(
            ent.user_id,
            KIND_VIP,
            tier.price,
            {"tierId": tier.id},
            is_auto_renewal=True,
        )

        async with self.locks.hold(vip_lock_key(ent.user_id)):
            await vip_store.mark_renewal_requested(db, ent.user_id, opened.transaction_id)
            await commit_or_raise(db, "renewal request")

        logger.info("Renewal checkout requested for user %s (tier=%s tx=%s)", ent.user_id, tier.name, opened.transaction_id)
        return ACTION_RENEWAL_REQUESTED

    async def _deactivate(self, db: AsyncSession, ent: ExpiringEntitlement) -> str:
        async with self.locks.hold(vip_lock_key(ent.user_id)):
            revoked = await vip_store.deactivate(db, ent.user_id, ent.expiry_instant)
            await commit_or_raise(db, "VIP deactivation")

        if not revoked:
            logger.info("Skipped deactivation for user %s: entitlement changed since read", ent.user_id)
            return ACTION_NONE
        logger.info("VIP deactivated for user %s", ent.user_id)
        return ACTION_DEACTIVATED
