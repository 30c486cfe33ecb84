"""Transaction kinds, statuses and webhook outcomes.

Status progression: PENDING -> COMPLETED | FAILED
Terminal states never transition again.
"""

from __future__ import annotations

KIND_VIP = "VIP"
KIND_COINS = "COINS"
KIND_SUBSCRIPTION = "SUBSCRIPTION"

TRANSACTION_KINDS = {KIND_VIP, KIND_COINS, KIND_SUBSCRIPTION}

STATUS_PENDING = "PENDING"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"

VALID_TRANSITIONS: dict[str, list[str]] = {
    STATUS_PENDING: [STATUS_COMPLETED, STATUS_FAILED],
    STATUS_COMPLETED: [],
    STATUS_FAILED: [],
}

OUTCOME_SUCCEEDED = "SUCCEEDED"
OUTCOME_FAILED = "FAILED"
OUTCOME_EXPIRED = "EXPIRED"

OUTCOME_TO_STATUS: dict[str, str] = {
    OUTCOME_SUCCEEDED: STATUS_COMPLETED,
    OUTCOME_FAILED: STATUS_FAILED,
    OUTCOME_EXPIRED: STATUS_FAILED,
}


def is_terminal(status: str) -> bool:
    """A status with no outgoing transitions."""
    return not VALID_TRANSITIONS.get(status)
