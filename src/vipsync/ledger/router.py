"""Transaction endpoints: checkout creation, queries, payment webhook."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.config import get_settings
from vipsync.database import get_session
from vipsync.db.models import Transaction
from vipsync.dependencies import get_dispatcher, get_gateway
from vipsync.errors import TransactionNotFound
from vipsync.ledger import store
from vipsync.ledger.schemas import (
    CheckoutResponse,
    CreateTransactionRequest,
    TransactionListResponse,
    TransactionResponse,
    TransactionStatsResponse,
    WebhookAckResponse,
)
from vipsync.ledger.workflow import TransactionWorkflow
from vipsync.notifications.notifier import NotificationDispatcher
from vipsync.payments.gateway import PaymentGateway
from vipsync.payments.webhooks import translate_event

router = APIRouter(prefix="/api/v1/transactions", tags=["Transactions"])


def _to_response(tx: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=tx.id,
        user_id=tx.user_id,
        type=tx.kind,
        amount=tx.amount,
        status=tx.status,
        session_id=tx.external_payment_ref,
        tier_id=tx.tier_id,
        product_name=tx.product_name,
        description=tx.description,
        is_auto_renewal=tx.is_auto_renewal,
        metadata=tx.checkout_metadata or {},
        created_at=tx.created_at,
        updated_at=tx.updated_at,
    )


@router.post("", response_model=CheckoutResponse, status_code=201)
async def create_transaction(
    body: CreateTransactionRequest,
    db: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Open a checkout session for a purchase."""
    opened = await TransactionWorkflow(db, gateway, dispatcher).open_transaction(
        body.user_id,
        body.type,
        tier_id=body.tier_id,
        amount=body.amount,
        metadata=body.metadata,
        product_name=body.product_name,
        description=body.description,
    )
    return CheckoutResponse(
        transaction_id=opened.transaction_id,
        checkout_url=opened.checkout_url,
        session_id=opened.external_payment_ref,
    )


@router.post("/webhook", response_model=WebhookAckResponse)
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Payment provider webhook. Replays are acknowledged without effect."""
    payload = await request.body()
    event = gateway.parse_webhook(payload, stripe_signature)
    webhook = translate_event(event)
    if webhook is None:
        return WebhookAckResponse(processed=False)

    result = await TransactionWorkflow(db, gateway, dispatcher).finalize(
        webhook.external_payment_ref, webhook.outcome,
    )
    return WebhookAckResponse(processed=result.applied)


@router.get("/success", response_class=RedirectResponse)
async def checkout_success(session_id: str | None = None):
    """Checkout return URL; sends the buyer back to the frontend."""
    return RedirectResponse(get_settings().frontend_url)


@router.get("/cancel", response_class=RedirectResponse)
async def checkout_cancel():
    return RedirectResponse(get_settings().frontend_url)


@router.get("/user/{user_id}", response_model=TransactionListResponse)
async def list_user_transactions(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    type: str | None = Query(default=None),
    status: str | None = Query(default=None),
    db: AsyncSession = Depends(get_session),
):
    """A user's transactions, newest first."""
    rows = await store.list_user_transactions(
        db, user_id, limit=limit, offset=offset, kind=type, status=status,
    )
    return TransactionListResponse(
        transactions=[_to_response(tx) for tx in rows],
        limit=limit,
        offset=offset,
    )


@router.get("/stats/{user_id}", response_model=TransactionStatsResponse)
async def transaction_stats(user_id: str, db: AsyncSession = Depends(get_session)):
    stats = await store.get_transaction_stats(db, user_id)
    last = stats["last_transaction"]
    return TransactionStatsResponse(
        total_spent=stats["total_spent"],
        transaction_count=stats["transaction_count"],
        last_transaction=_to_response(last) if last is not None else None,
    )


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(transaction_id: str, db: AsyncSession = Depends(get_session)):
    tx = await store.get_transaction(db, transaction_id)
    if tx is None:
        raise TransactionNotFound(transaction_id)
    return _to_response(tx)
