"""Pydantic request/response models for transaction endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class CreateTransactionRequest(BaseModel):
    user_id: str = Field(alias="userId", min_length=1)
    type: Literal["VIP", "COINS", "SUBSCRIPTION"]
    amount: Decimal | None = Field(default=None, ge=0)
    tier_id: str | None = Field(default=None, alias="tierId")
    product_name: str | None = Field(default=None, alias="productName")
    description: str | None = None
    metadata: dict[str, str] = {}

    model_config = ConfigDict(populate_by_name=True)


class CheckoutResponse(BaseModel):
    transaction_id: str
    checkout_url: str
    session_id: str


class TransactionResponse(BaseModel):
    id: str
    user_id: str
    type: str
    amount: Decimal
    status: str
    session_id: str | None
    tier_id: str | None = None
    product_name: str | None = None
    description: str | None = None
    is_auto_renewal: bool = False
    metadata: dict = {}
    created_at: datetime
    updated_at: datetime


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    limit: int
    offset: int


class TransactionStatsResponse(BaseModel):
    total_spent: Decimal
    transaction_count: int
    last_transaction: TransactionResponse | None = None


class WebhookAckResponse(BaseModel):
    received: bool = True
    processed: bool = False
