"""Domain error taxonomy.

Every error the core raises derives from ``VipSyncError`` and carries the
HTTP status the API surface renders it with. Nothing here mutates state:
raising one of these always means the operation left the stores untouched.

- ValidationError (400): bad or missing input. TierNotFound is a validation
  failure reported as 404.
- NotFoundError (404): unknown transaction, entitlement or user.
- GatewayUnavailable (503): the payment/vote platform failed; safe to retry.
- Unauthorized (401): bad webhook secret or signature.
- PersistenceError (500): a store write failed and was rolled back.
"""

from __future__ import annotations

from typing import Any


class VipSyncError(Exception):
    """Base error with a stable code and HTTP status."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(VipSyncError):
    code = "VALIDATION_ERROR"
    status_code = 400


class TierNotFound(ValidationError):
    code = "TIER_NOT_FOUND"
    status_code = 404

    def __init__(self, tier: str) -> None:
        super().__init__(f"VIP tier not found: {tier}", {"tier": tier})
        self.tier = tier


class NotFoundError(VipSyncError):
    code = "NOT_FOUND"
    status_code = 404


class TransactionNotFound(NotFoundError):
    code = "TRANSACTION_NOT_FOUND"

    def __init__(self, reference: str) -> None:
        super().__init__("Transaction not found", {"reference": reference})
        self.reference = reference


class GatewayUnavailable(VipSyncError):
    code = "GATEWAY_UNAVAILABLE"
    status_code = 503


class Unauthorized(VipSyncError):
    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class PersistenceError(VipSyncError):
    code = "PERSISTENCE_ERROR"
    status_code = 500
