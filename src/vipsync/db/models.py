"""ORM models for the ledger, entitlement and vote stores."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from vipsync.db.base import Base

# Entitlement sentinels written on deactivation
NO_TIER = "null"
NO_EXPIRY = -1


# ---------------------------------------------------------------------------
# Tier catalog
# ---------------------------------------------------------------------------


class VipTier(Base):
    """Priced catalog entry. Reference data, never mutated by the engine."""

    __tablename__ = "vip_tiers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class Transaction(Base):
    """One payment attempt and its terminal outcome. Never deleted."""

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    external_payment_ref: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    tier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    product_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    is_auto_renewal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checkout_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Entitlements
# ---------------------------------------------------------------------------


class Entitlement(Base):
    """Per-user VIP state. ``is_vip`` implies ``expiry_instant > 0``."""

    __tablename__ = "entitlements"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    is_vip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tier_name: Mapped[str] = mapped_column(String(64), nullable=False, default=NO_TIER)
    expiry_instant: Mapped[int] = mapped_column(BigInteger, nullable=False, default=NO_EXPIRY, index=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reward_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    # Set while a renewal checkout is awaiting payment
    renewal_transaction_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------


class VoteRecord(Base):
    """Per-user vote state. ``has_voted`` and ``has_collected`` are never both set."""

    __tablename__ = "vote_records"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    has_voted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_collected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    query: Mapped[str | None] = mapped_column(Text, nullable=True)
    voted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
