"""Translate Stripe webhook events into finalize outcomes."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from vipsync.errors import ValidationError
from vipsync.ledger.constants import OUTCOME_EXPIRED, OUTCOME_FAILED, OUTCOME_SUCCEEDED

logger = logging.getLogger(__name__)

# Checkout sessions that completed without money having moved yet
# (async payment methods) are settled by the async_payment_* events.
PAID_STATUSES = {"paid", "no_payment_required"}

EVENT_OUTCOMES: dict[str, str] = {
    "checkout.session.completed": OUTCOME_SUCCEEDED,
    "checkout.session.async_payment_succeeded": OUTCOME_SUCCEEDED,
    "checkout.session.async_payment_failed": OUTCOME_FAILED,
    "checkout.session.expired": OUTCOME_EXPIRED,
}


@dataclass(frozen=True)
class PaymentWebhook:
    event_type: str
    external_payment_ref: str
    outcome: str


def translate_event(event: Mapping[str, Any]) -> PaymentWebhook | None:
    """Map a webhook event to ``(external_payment_ref, outcome)``.

    Returns None for event types that carry no outcome; those are
    acknowledged and otherwise ignored.
    """
    event_type = str(event.get("type", ""))
    outcome = EVENT_OUTCOMES.get(event_type)
    if outcome is None:
        logger.info("Ignoring webhook event type %s", event_type)
        return None

    obj = (event.get("data") or {}).get("object") or {}
    payment_ref = obj.get("id")
    if not payment_ref:
        raise ValidationError("Invalid webhook event")

    if event_type == "checkout.session.completed":
        payment_status = obj.get("payment_status", "paid")
        if payment_status not in PAID_STATUSES:
            logger.info("Checkout %s completed with payment_status=%s, awaiting settlement", payment_ref, payment_status)
            return None

    return PaymentWebhook(event_type=event_type, external_payment_ref=str(payment_ref), outcome=outcome)
