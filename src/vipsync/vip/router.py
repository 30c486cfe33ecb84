"""VIP endpoints: tier catalog, status, purchase, activation and auto-renew."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.database import get_session
from vipsync.dependencies import get_dispatcher, get_gateway
from vipsync.ledger.constants import KIND_VIP
from vipsync.ledger.schemas import CheckoutResponse
from vipsync.ledger.workflow import TransactionWorkflow
from vipsync.notifications.notifier import NotificationDispatcher
from vipsync.payments.gateway import PaymentGateway
from vipsync.vip.catalog import TierCatalog
from vipsync.vip.schemas import (
    ActivateRequest,
    ActivationResponse,
    AutoRenewRequest,
    EntitlementStatusResponse,
    PurchaseRequest,
    TierListResponse,
    TierResponse,
)
from vipsync.vip.service import EntitlementStatus, get_entitlement_status, update_auto_renew

router = APIRouter(prefix="/api/v1/vip", tags=["VIP"])


def _status_response(status: EntitlementStatus) -> EntitlementStatusResponse:
    return EntitlementStatusResponse(
        user_id=status.user_id,
        is_vip=status.is_vip,
        tier=status.tier_name,
        expiry_instant=status.expiry_instant,
        days_remaining=status.days_remaining,
        auto_renew=status.auto_renew,
        reward_balance=status.reward_balance,
        renewal_pending=status.renewal_pending,
    )


@router.get("/tiers", response_model=TierListResponse)
async def list_tiers(db: AsyncSession = Depends(get_session)):
    tiers = await TierCatalog(db).list_tiers()
    return TierListResponse(tiers=[
        TierResponse(
            id=t.id,
            name=t.name,
            price=t.price,
            duration_days=t.duration_days,
            reward_coins=t.reward_coins,
        )
        for t in tiers
    ])


@router.get("/status/{user_id}", response_model=EntitlementStatusResponse)
async def vip_status(user_id: str, db: AsyncSession = Depends(get_session)):
    """Current entitlement. Users who never bought VIP report as inactive."""
    return _status_response(await get_entitlement_status(db, user_id))


@router.post("/purchase", response_model=CheckoutResponse, status_code=201)
async def purchase_vip(
    body: PurchaseRequest,
    db: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Open a checkout for a tier. VIP is granted when the payment webhook lands."""
    opened = await TransactionWorkflow(db, gateway, dispatcher).open_transaction(
        body.user_id, KIND_VIP, tier_id=body.tier_id,
    )
    return CheckoutResponse(
        transaction_id=opened.transaction_id,
        checkout_url=opened.checkout_url,
        session_id=opened.external_payment_ref,
    )


@router.post("/activate", response_model=ActivationResponse)
async def activate_vip(
    body: ActivateRequest,
    db: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Complete a paid purchase. A later webhook for the same payment is a no-op."""
    result = await TransactionWorkflow(db, gateway, dispatcher).complete_activation(
        body.user_id, body.tier_id, body.transaction_id,
    )
    status = await get_entitlement_status(db, body.user_id)
    return ActivationResponse(applied=result.applied, entitlement=_status_response(status))


@router.put("/{user_id}/auto-renew", response_model=EntitlementStatusResponse)
async def set_auto_renew(
    user_id: str,
    body: AutoRenewRequest,
    db: AsyncSession = Depends(get_session),
):
    return _status_response(await update_auto_renew(db, user_id, body.enabled))
