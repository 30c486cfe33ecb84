"""Ledger store: append and status-update operations on transactions."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.db.models import Transaction
from vipsync.ledger.constants import STATUS_COMPLETED, STATUS_PENDING, VALID_TRANSITIONS


async def create_transaction(
    db: AsyncSession,
    *,
    user_id: str,
    kind: str,
    amount: Decimal,
    external_payment_ref: str,
    tier_id: str | None = None,
    product_name: str | None = None,
    description: str | None = None,
    is_auto_renewal: bool = False,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Transaction:
    """Add a PENDING transaction to the session and flush it."""
    if now is None:
        now = datetime.now(timezone.utc)

    tx = Transaction(
        user_id=user_id,
        kind=kind,
        amount=amount,
        external_payment_ref=external_payment_ref,
        status=STATUS_PENDING,
        tier_id=tier_id,
        product_name=product_name,
        description=description,
        is_auto_renewal=is_auto_renewal,
        checkout_metadata=metadata or {},
        created_at=now,
        updated_at=now,
    )
    db.add(tx)
    await db.flush()
    return tx


async def get_transaction(db: AsyncSession, transaction_id: str) -> Transaction | None:
    result = await db.execute(select(Transaction).where(Transaction.id == transaction_id))
    return result.scalar_one_or_none()


async def get_by_payment_ref(db: AsyncSession, external_payment_ref: str) -> Transaction | None:
    result = await db.execute(
        select(Transaction).where(Transaction.external_payment_ref == external_payment_ref)
    )
    return result.scalar_one_or_none()


async def list_user_transactions(
    db: AsyncSession,
    user_id: str,
    *,
    limit: int | None = None,
    offset: int | None = None,
    kind: str | None = None,
    status: str | None = None,
) -> list[Transaction]:
    """A user's transactions, newest first, optionally filtered by kind and status."""
    query = select(Transaction).where(Transaction.user_id == user_id)
    if kind:
        query = query.where(Transaction.kind == kind)
    if status:
        query = query.where(Transaction.status == status)
    query = query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def mark_terminal(
    db: AsyncSession,
    transaction_id: str,
    status: str,
    now: datetime | None = None,
) -> bool:
    """Move a PENDING transaction to ``status``. Returns False if it was no longer PENDING.

    The update is conditional on the current status, so two deliveries of
    the same webhook racing each other cannot both win.
    """
    if status not in VALID_TRANSITIONS[STATUS_PENDING]:
        raise ValueError(f"Invalid transition: {STATUS_PENDING} -> {status}")
    if now is None:
        now = datetime.now(timezone.utc)

    result = await db.execute(
        update(Transaction)
        .where(Transaction.id == transaction_id, Transaction.status == STATUS_PENDING)
        .values(status=status, updated_at=now)
    )
    return result.rowcount == 1


async def get_transaction_stats(db: AsyncSession, user_id: str) -> dict[str, Any]:
    """Total completed spend, transaction count and the most recent transaction."""
    total = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.user_id == user_id,
            Transaction.status == STATUS_COMPLETED,
        )
    )
    count = await db.execute(
        select(func.count()).select_from(Transaction).where(Transaction.user_id == user_id)
    )
    latest = await list_user_transactions(db, user_id, limit=1)

    return {
        "total_spent": Decimal(str(total.scalar_one())).quantize(Decimal("0.01")),
        "transaction_count": count.scalar_one(),
        "last_transaction": latest[0] if latest else None,
    }
