"""Pydantic request/response models for VIP endpoints."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class TierResponse(BaseModel):
    id: str
    name: str
    price: Decimal
    duration_days: int
    reward_coins: int


class TierListResponse(BaseModel):
    tiers: list[TierResponse]


class EntitlementStatusResponse(BaseModel):
    user_id: str
    is_vip: bool
    tier: str
    expiry_instant: int
    days_remaining: int
    auto_renew: bool
    reward_balance: int
    renewal_pending: bool = False


class PurchaseRequest(BaseModel):
    user_id: str = Field(alias="userId", min_length=1)
    tier_id: str = Field(alias="tierId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class AutoRenewRequest(BaseModel):
    enabled: bool


class ActivateRequest(BaseModel):
    user_id: str = Field(alias="userId", min_length=1)
    tier_id: str = Field(alias="tierId", min_length=1)
    transaction_id: str = Field(alias="transactionId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ActivationResponse(BaseModel):
    success: bool = True
    applied: bool
    entitlement: EntitlementStatusResponse
