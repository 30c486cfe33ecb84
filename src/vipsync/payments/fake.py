"""In-memory payment gateway for local development and tests.

Sessions are recorded instead of created remotely; webhooks are plain JSON
with no signature.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from vipsync.errors import GatewayUnavailable, ValidationError
from vipsync.payments.gateway import CheckoutSession


@dataclass
class RecordedCheckout:
    session: CheckoutSession
    user_id: str
    amount: Decimal
    kind: str
    metadata: dict[str, str] = field(default_factory=dict)
    product_name: str | None = None
    description: str | None = None


class InMemoryPaymentGateway:
    def __init__(self) -> None:
        self.checkouts: list[RecordedCheckout] = []
        self.available = True

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
        if not self.available:
            raise GatewayUnavailable("Failed to create payment session")

        session_id = f"cs_fake_{uuid.uuid4().hex}"
        session = CheckoutSession(id=session_id, url=f"https://checkout.invalid/pay/{session_id}")
        self.checkouts.append(RecordedCheckout(
            session=session,
            user_id=user_id,
            amount=amount,
            kind=kind,
            metadata=dict(metadata),
            product_name=product_name,
            description=description,
        ))
        return session

    def parse_webhook(self, payload: bytes, signature: str | None) -> Mapping[str, Any]:
        try:
            event = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValidationError("Invalid webhook payload") from exc
        if not isinstance(event, dict):
            raise ValidationError("Invalid webhook payload")
        return event

    @property
    def last_checkout(self) -> RecordedCheckout | None:
        return self.checkouts[-1] if self.checkouts else None
