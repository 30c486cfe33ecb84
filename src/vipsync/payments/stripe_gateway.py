"""Stripe Checkout implementation of the payment gateway."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe

from vipsync.errors import GatewayUnavailable, Unauthorized, ValidationError
from vipsync.payments.gateway import CheckoutSession

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Stripe charges in cents."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripePaymentGateway:
    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        currency: str,
        success_url: str,
        cancel_url: str,
    ) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.success_url = success_url
        self.cancel_url = cancel_url

    async def create_checkout_session(
        self,
        *,
        user_id: str,
        amount: Decimal,
        kind: str,
        metadata: dict[str, str],
        product_name: str | None = None,
        description: str | None = None,
    ) -> CheckoutSession:
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.api_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": self.currency,
                            "product_data": {
                                "name": product_name or "Payment",
                                "description": description or "Transaction payment",
                            },
                            "unit_amount": to_minor_units(amount),
                        },
                        "quantity": 1,
                    }
                ],
                success_url=self.success_url,
                cancel_url=self.cancel_url,
                client_reference_id=user_id,
                metadata={**metadata, "userId": user_id, "type": kind},
            )
        except stripe.StripeError as exc:
            logger.error(
                "Stripe checkout creation failed for user %s: %s (%s)",
                user_id, exc, type(exc).__name__,
            )
            raise GatewayUnavailable("Failed to create payment session") from exc

        return CheckoutSession(
            id=session.id,
            url=session.url or "",
            status=session.status or "open",
        )

    def parse_webhook(self, payload: bytes, signature: str | None) -> Mapping[str, Any]:
        if not self.webhook_secret:
            raise Unauthorized("Webhook secret not configured")
        if not signature:
            raise Unauthorized("Missing Stripe signature")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Invalid Stripe signature: %s", exc)
            raise Unauthorized("Invalid signature") from exc
        except ValueError as exc:
            raise ValidationError("Invalid webhook payload") from exc
        # Verified; hand back plain dicts rather than StripeObjects
        return json.loads(payload)
