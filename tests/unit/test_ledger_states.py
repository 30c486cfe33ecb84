"""Unit tests for the transaction status machine."""

from __future__ import annotations

from vipsync.ledger.constants import (
    OUTCOME_EXPIRED,
    OUTCOME_FAILED,
    OUTCOME_SUCCEEDED,
    OUTCOME_TO_STATUS,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    VALID_TRANSITIONS,
    is_terminal,
)


class TestTransactionStates:
    def test_valid_transitions_structure(self):
        assert set(VALID_TRANSITIONS.keys()) == {STATUS_PENDING, STATUS_COMPLETED, STATUS_FAILED}

    def test_pending_moves_to_either_terminal(self):
        assert set(VALID_TRANSITIONS[STATUS_PENDING]) == {STATUS_COMPLETED, STATUS_FAILED}

    def test_terminal_states_have_no_exits(self):
        assert is_terminal(STATUS_COMPLETED)
        assert is_terminal(STATUS_FAILED)
        assert not is_terminal(STATUS_PENDING)

    def test_outcome_mapping(self):
        assert OUTCOME_TO_STATUS[OUTCOME_SUCCEEDED] == STATUS_COMPLETED
        assert OUTCOME_TO_STATUS[OUTCOME_FAILED] == STATUS_FAILED
        assert OUTCOME_TO_STATUS[OUTCOME_EXPIRED] == STATUS_FAILED
