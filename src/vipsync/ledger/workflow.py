"""Transaction workflow: open a checkout, then finalize it from the payment webhook.

open:      validate -> gateway checkout -> PENDING row
finalize:  PENDING -> COMPLETED (activate VIP) | FAILED
activate:  [record] -> PENDING -> COMPLETED (activate VIP), same step as finalize

The checkout is requested before anything is written, so a gateway failure
never leaves a PENDING row behind. The reverse gap (session created, local
write failed) is logged with the session reference for reconciliation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.database import commit_or_raise
from vipsync.db.models import Transaction
from vipsync.errors import (
    PersistenceError,
    TierNotFound,
    TransactionNotFound,
    ValidationError,
    VipSyncError,
)
from vipsync.ledger import store as ledger_store
from vipsync.ledger.constants import (
    KIND_VIP,
    OUTCOME_TO_STATUS,
    STATUS_COMPLETED,
    STATUS_FAILED,
    TRANSACTION_KINDS,
    is_terminal,
)
from vipsync.locks import KeyedLock, user_locks
from vipsync.notifications.notifier import NotificationDispatcher
from vipsync.payments.gateway import PaymentGateway
from vipsync.vip import store as vip_store
from vipsync.vip.activation import EntitlementActivation, vip_lock_key
from vipsync.vip.catalog import TierCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenedTransaction:
    transaction_id: str
    checkout_url: str
    external_payment_ref: str


@dataclass(frozen=True)
class FinalizeResult:
    transaction: Transaction
    applied: bool  # False for replays of an already terminal transaction


def _parse_amount(amount: Any) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite() or value < 0:
        raise ValidationError("Amount must be zero or positive")
    return value


class TransactionWorkflow:
    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        dispatcher: NotificationDispatcher | None = None,
        locks: KeyedLock = user_locks,
    ) -> None:
        self.db = db
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.locks = locks
        self.catalog = TierCatalog(db)
        self.activation = EntitlementActivation(db, dispatcher, locks)

    async def open(
        self,
        user_id: str,
        kind: str,
        amount: Decimal | int | float | str,
        metadata: dict[str, Any] | None = None,
        *,
        product_name: str | None = None,
        description: str | None = None,
        is_auto_renewal: bool = False,
    ) -> OpenedTransaction:
        """Request a checkout session and record the PENDING transaction."""
        if kind not in TRANSACTION_KINDS:
            raise ValidationError(f"Unknown transaction kind: {kind}")
        if not user_id:
            raise ValidationError("User ID is required")
        value = _parse_amount(amount)
        meta = {str(k): str(v) for k, v in (metadata or {}).items()}

        tier_id: str | None = None
        if kind == KIND_VIP:
            tier_id = meta.get("tierId")
            tier = await self.catalog.get_tier_by_id(tier_id) if tier_id else None
            if tier is None:
                raise TierNotFound(tier_id or "")
            product_name = product_name or f"VIP {tier.name}"
            description = description or f"Purchasing a {tier.name} vip"
        if is_auto_renewal:
            meta["isAutoRenewal"] = "true"

        session = await self.gateway.create_checkout_session(
            user_id=user_id,
            amount=value,
            kind=kind,
            metadata=meta,
            product_name=product_name,
            description=description,
        )

        try:
            tx = await ledger_store.create_transaction(
                self.db,
                user_id=user_id,
                kind=kind,
                amount=value,
                external_payment_ref=session.id,
                tier_id=tier_id,
                product_name=product_name,
                description=description,
                is_auto_renewal=is_auto_renewal,
                metadata=meta,
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(
                "Orphaned checkout session %s for user %s: local transaction write failed: %s",
                session.id, user_id, exc,
            )
            raise PersistenceError("Failed to record transaction") from exc

        logger.info(
            "Transaction opened: id=%s user=%s kind=%s amount=%s ref=%s",
            tx.id, user_id, kind, value, session.id,
        )
        return OpenedTransaction(
            transaction_id=tx.id,
            checkout_url=session.url,
            external_payment_ref=session.id,
        )

    async def open_transaction(
        self,
        user_id: str,
        kind: str,
        tier_id: str | None = None,
        amount: Decimal | int | float | str | None = None,
        metadata: dict[str, Any] | None = None,
        *,
        product_name: str | None = None,
        description: str | None = None,
    ) -> OpenedTransaction:
        """Open a purchase; VIP purchases are priced from the tier catalog."""
        meta = dict(metadata or {})
        if kind == KIND_VIP:
            tier = await self.catalog.get_tier_by_id(tier_id) if tier_id else None
            if tier is None:
                raise TierNotFound(tier_id or "")
            meta["tierId"] = tier.id
            amount = tier.price
        elif amount is None:
            raise ValidationError("Amount is required")
        return await self.open(
            user_id, kind, amount, meta, product_name=product_name, description=description,
        )

    async def finalize(self, external_payment_ref: str, outcome: str) -> FinalizeResult:
        """Apply a webhook outcome to the transaction behind ``external_payment_ref``.

        Replays against a terminal transaction are a silent no-op.
        """
        status = OUTCOME_TO_STATUS.get(outcome)
        if status is None:
            raise ValidationError(f"Unknown payment outcome: {outcome}")

        tx = await ledger_store.get_by_payment_ref(self.db, external_payment_ref)
        if tx is None:
            raise TransactionNotFound(external_payment_ref)
        if is_terminal(tx.status):
            logger.info("Webhook replay for %s ignored (already %s)", external_payment_ref, tx.status)
            return FinalizeResult(transaction=tx, applied=False)

        activated_tier: str | None = None
        async with self.locks.hold(vip_lock_key(tx.user_id)):
            try:
                won = await ledger_store.mark_terminal(self.db, tx.id, status)
                if not won:
                    await self.db.rollback()
                    await self.db.refresh(tx)
                    logger.info("Webhook for %s lost the race, already %s", external_payment_ref, tx.status)
                    return FinalizeResult(transaction=tx, applied=False)

                if tx.kind == KIND_VIP and status == STATUS_COMPLETED:
                    _, tier = await self.activation.apply(tx.user_id, tx.tier_id)
                    activated_tier = tier.name
                elif tx.kind == KIND_VIP and status == STATUS_FAILED:
                    await vip_store.clear_renewal_request(self.db, tx.user_id, tx.id)
            except VipSyncError:
                await self.db.rollback()
                raise
            await commit_or_raise(self.db, "transaction finalize")

        logger.info("Transaction %s finalized as %s (%s)", tx.id, status, outcome)
        if activated_tier is not None:
            self.activation.announce(tx.user_id, activated_tier)
        return FinalizeResult(transaction=tx, applied=True)

    async def complete_activation(
        self, user_id: str, tier_id: str, external_payment_ref: str
    ) -> FinalizeResult:
        """Complete a paid VIP purchase on explicit request.

        Records the transaction if no checkout row exists for the reference,
        then completes it and grants the tier in one database transaction.
        Shares the PENDING -> COMPLETED step with ``finalize``, so whichever of
        the two arrives second grants nothing.
        """
        if not user_id:
            raise ValidationError("User ID is required")
        if not external_payment_ref:
            raise ValidationError("Transaction ID is required")
        tier = await self.catalog.get_tier_by_id(tier_id) if tier_id else None
        if tier is None:
            raise TierNotFound(tier_id or "")

        async with self.locks.hold(vip_lock_key(user_id)):
            try:
                tx = await ledger_store.get_by_payment_ref(self.db, external_payment_ref)
                if tx is None:
                    tx = await ledger_store.create_transaction(
                        self.db,
                        user_id=user_id,
                        kind=KIND_VIP,
                        amount=tier.price,
                        external_payment_ref=external_payment_ref,
                        tier_id=tier.id,
                        product_name=f"VIP {tier.name}",
                        metadata={"tierId": tier.id},
                    )
                elif tx.user_id != user_id or tx.kind != KIND_VIP or tx.tier_id not in (None, tier.id):
                    raise ValidationError(
                        "Transaction does not match this VIP purchase",
                        {"reference": external_payment_ref},
                    )

                if is_terminal(tx.status):
                    logger.info("Activation for %s ignored (already %s)", external_payment_ref, tx.status)
                    return FinalizeResult(transaction=tx, applied=False)

                won = await ledger_store.mark_terminal(self.db, tx.id, STATUS_COMPLETED)
                if not won:
                    await self.db.rollback()
                    await self.db.refresh(tx)
                    logger.info("Activation for %s lost the race, already %s", external_payment_ref, tx.status)
                    return FinalizeResult(transaction=tx, applied=False)

                await self.activation.apply(user_id, tier.id)
            except VipSyncError:
                await self.db.rollback()
                raise
            await commit_or_raise(self.db, "VIP activation")

        logger.info("Transaction %s completed by activation", tx.id)
        self.activation.announce(user_id, tier.name)
        return FinalizeResult(transaction=tx, applied=True)
