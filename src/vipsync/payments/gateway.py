"""Payment gateway capability.

The engine only consumes the gateway's result shapes: a checkout session
reference/url on the way out and a parsed webhook event on the way in.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from vipsync.config import Settings


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str
    status: str = "open"


class PaymentGateway(Protocol):
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
        """Create a hosted checkout. Raises GatewayUnavailable on provider failure."""
        ...

    def parse_webhook(self, payload: bytes, signature: str | None) -> Mapping[str, Any]:
        """Verify and decode an inbound webhook. Raises Unauthorized on a bad signature."""
        ...


def build_gateway(settings: Settings) -> PaymentGateway:
    """Gateway for the configured provider."""
    if settings.payment_provider == "fake":
        from vipsync.payments.fake import InMemoryPaymentGateway

        return InMemoryPaymentGateway()

    from vipsync.payments.stripe_gateway import StripePaymentGateway

    return StripePaymentGateway(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        currency=settings.currency,
        success_url=settings.checkout_success_url,
        cancel_url=settings.checkout_cancel_url,
    )
