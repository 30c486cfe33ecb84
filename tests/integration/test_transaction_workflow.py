"""Transaction workflow: open, finalize, replays and races."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from vipsync.db.models import Transaction
from vipsync.errors import (
    GatewayUnavailable,
    TierNotFound,
    TransactionNotFound,
    ValidationError,
)
from vipsync.ledger import store as ledger_store
from vipsync.ledger.constants import (
    KIND_COINS,
    KIND_VIP,
    OUTCOME_EXPIRED,
    OUTCOME_FAILED,
    OUTCOME_SUCCEEDED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
)
from vipsync.ledger.workflow import TransactionWorkflow
from vipsync.vip import store as vip_store

pytestmark = pytest.mark.asyncio


async def _count_transactions(db) -> int:
    result = await db.execute(select(func.count()).select_from(Transaction))
    return result.scalar_one()


class TestOpenTransaction:
    async def test_vip_priced_from_tier(self, db, gateway, dispatcher, locks):
        workflow = TransactionWorkflow(db, gateway, dispatcher, locks)
        opened = await workflow.open_transaction("user-1", KIND_VIP, tier_id="vip-silver")

        tx = await ledger_store.get_transaction(db, opened.transaction_id)
        assert tx.status == STATUS_PENDING
        assert tx.amount == Decimal("19.90")
        assert tx.tier_id == "vip-silver"
        assert tx.product_name == "VIP Silver"
        assert tx.external_payment_ref == opened.external_payment_ref
        assert opened.checkout_url

        checkout = gateway.last_checkout
        assert checkout.amount == Decimal("19.90")
        assert checkout.metadata["tierId"] == "vip-silver"
        assert checkout.kind == KIND_VIP

    async def test_coins_requires_amount(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        with pytest.raises(ValidationError):
            await workflow.open_transaction("user-1", KIND_COINS)
        assert gateway.checkouts == []

    async def test_coins_with_amount(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        opened = await workflow.open_transaction("user-1", KIND_COINS, amount="25.00")
        tx = await ledger_store.get_transaction(db, opened.transaction_id)
        assert tx.kind == KIND_COINS
        assert tx.amount == Decimal("25.00")

    async def test_unknown_tier_rejected_before_checkout(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        with pytest.raises(TierNotFound):
            await workflow.open_transaction("user-1", KIND_VIP, tier_id="vip-platinum")
        assert gateway.checkouts == []
        assert await _count_transactions(db) == 0

    async def test_unknown_kind_rejected(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        with pytest.raises(ValidationError):
            await workflow.open("user-1", "DONATION", Decimal("5"))

    async def test_negative_amount_rejected(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        with pytest.raises(ValidationError):
            await workflow.open("user-1", KIND_COINS, Decimal("-1"))

    async def test_metadata_values_stringified(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        opened = await workflow.open("user-1", KIND_COINS, 10, {"pack": 3})
        tx = await ledger_store.get_transaction(db, opened.transaction_id)
        assert tx.checkout_metadata == {"pack": "3"}

    async def test_gateway_failure_leaves_no_row(self, db, gateway, locks):
        gateway.available = False
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        with pytest.raises(GatewayUnavailable):
            await workflow.open_transaction("user-1", KIND_VIP, tier_id="vip-gold")
        assert await _count_transactions(db) == 0


class TestFinalize:
    async def _open_vip(self, db, gateway, dispatcher, locks, tier_id="vip-gold"):
        workflow = TransactionWorkflow(db, gateway, dispatcher, locks)
        opened = await workflow.open_transaction("user-1", KIND_VIP, tier_id=tier_id)
        return workflow, opened

    async def test_success_activates_vip(self, db, gateway, dispatcher, notifier, locks):
        workflow, opened = await self._open_vip(db, gateway, dispatcher, locks)

        result = await workflow.finalize(opened.external_payment_ref, OUTCOME_SUCCEEDED)
        assert result.applied is True
        assert result.transaction.status == STATUS_COMPLETED

        ent = await vip_store.get_entitlement(db, "user-1")
        assert ent.is_vip is True
        assert ent.tier_name == "Gold"
        assert ent.reward_balance == 25_000

        await dispatcher.drain()
        assert len(notifier.messages) == 1
        assert "Gold" in notifier.messages[0]

    async def test_replay_is_silent_noop(self, db, gateway, dispatcher, notifier, locks):
        workflow, opened = await self._open_vip(db, gateway, dispatcher, locks)
        await workflow.finalize(opened.external_payment_ref, OUTCOME_SUCCEEDED)

        replay = await workflow.finalize(opened.external_payment_ref, OUTCOME_SUCCEEDED)
        assert replay.applied is False
        assert replay.transaction.status == STATUS_COMPLETED

        ent = await vip_store.get_entitlement(db, "user-1")
        assert ent.reward_balance == 25_000
        await dispatcher.drain()
        assert len(notifier.messages) == 1

    async def test_failure_after_success_ignored(self, db, gateway, dispatcher, locks):
        workflow, opened = await self._open_vip(db, gateway, dispatcher, locks)
        await workflow.finalize(opened.external_payment_ref, OUTCOME_SUCCEEDED)
        result = await workflow.finalize(opened.external_payment_ref, OUTCOME_FAILED)
        assert result.applied is False
        assert result.transaction.status == STATUS_COMPLETED

    async def test_concurrent_deliveries_apply_once(self, session_factory, gateway, dispatcher, locks):
        async with session_factory() as db:
            _, opened = await self._open_vip(db, gateway, dispatcher, locks)

        async def deliver():
            async with session_factory() as db:
                workflow = TransactionWorkflow(db, gateway, dispatcher, locks)
                return await workflow.finalize(opened.external_payment_ref, OUTCOME_SUCCEEDED)

        results = await asyncio.gather(deliver(), deliver())
        assert sorted(r.applied for r in results) == [False, True]

        async with session_factory() as db:
            ent = await vip_store.get_entitlement(db, "user-1")
            assert ent.reward_balance == 25_000

    async def test_expired_marks_failed_without_entitlement(self, db, gateway, dispatcher, locks):
        workflow, opened = await self._open_vip(db, gateway, dispatcher, locks)
        result = await workflow.finalize(opened.external_payment_ref, OUTCOME_EXPIRED)
        assert result.applied is True
        assert result.transaction.status == STATUS_FAILED
        assert await vip_store.get_entitlement(db, "user-1") is None

    async def test_coins_completion_does_not_touch_entitlement(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        opened = await workflow.open_transaction("user-1", KIND_COINS, amount=10)
        result = await workflow.finalize(opened.external_payment_ref, OUTCOME_SUCCEEDED)
        assert result.transaction.status == STATUS_COMPLETED
        assert await vip_store.get_entitlement(db, "user-1") is None

    async def test_unknown_reference(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        with pytest.raises(TransactionNotFound):
            await workflow.finalize("cs_missing", OUTCOME_SUCCEEDED)

    async def test_unknown_outcome(self, db, gateway, dispatcher, locks):
        workflow, opened = await self._open_vip(db, gateway, dispatcher, locks)
        with pytest.raises(ValidationError):
            await workflow.finalize(opened.external_payment_ref, "REFUNDED")

    async def test_notifier_failure_keeps_grant(self, db, gateway, failing_notifier, locks):
        from vipsync.notifications.notifier import NotificationDispatcher

        dispatcher = NotificationDispatcher(failing_notifier)
        workflow, opened = await self._open_vip(db, gateway, dispatcher, locks)
        result = await workflow.finalize(opened.external_payment_ref, OUTCOME_SUCCEEDED)
        await dispatcher.drain()

        assert result.applied is True
        assert failing_notifier.attempts == 1
        ent = await vip_store.get_entitlement(db, "user-1")
        assert ent.is_vip is True

    async def test_failed_renewal_clears_marker(self, db, gateway, dispatcher, locks):
        workflow = TransactionWorkflow(db, gateway, dispatcher, locks)
        opened = await workflow.open("user-1", KIND_VIP, Decimal("34.90"), {"tierId": "vip-gold"}, is_auto_renewal=True)
        await vip_store.get_or_create_entitlement(db, "user-1")
        await vip_store.mark_renewal_requested(db, "user-1", opened.transaction_id)
        await db.commit()

        await workflow.finalize(opened.external_payment_ref, OUTCOME_FAILED)

        ent = await vip_store.get_entitlement(db, "user-1")
        await db.refresh(ent)
        assert ent.renewal_transaction_id is None


class TestCompleteActivation:
    async def test_activation_then_webhook_grants_once(self, db, gateway, dispatcher, notifier, locks):
        workflow = TransactionWorkflow(db, gateway, dispatcher, locks)
        opened = await workflow.open_transaction("user-1", KIND_VIP, tier_id="vip-gold")

        result = await workflow.complete_activation("user-1", "vip-gold", opened.external_payment_ref)
        assert result.applied is True
        assert result.transaction.status == STATUS_COMPLETED

        replay = await workflow.finalize(opened.external_payment_ref, OUTCOME_SUCCEEDED)
        assert replay.applied is False

        ent = await vip_store.get_entitlement(db, "user-1")
        assert ent.tier_name == "Gold"
        assert ent.reward_balance == 25_000
        await dispatcher.drain()
        assert len(notifier.messages) == 1

    async def test_webhook_then_activation_grants_once(self, db, gateway, dispatcher, locks):
        workflow = TransactionWorkflow(db, gateway, dispatcher, locks)
        opened = await workflow.open_transaction("user-1", KIND_VIP, tier_id="vip-gold")
        await workflow.finalize(opened.external_payment_ref, OUTCOME_SUCCEEDED)

        result = await workflow.complete_activation("user-1", "vip-gold", opened.external_payment_ref)
        assert result.applied is False

        ent = await vip_store.get_entitlement(db, "user-1")
        assert ent.reward_balance == 25_000

    async def test_unknown_reference_is_recorded(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        result = await workflow.complete_activation("user-1", "vip-silver", "pay_direct_1")
        assert result.applied is True

        tx = await ledger_store.get_by_payment_ref(db, "pay_direct_1")
        assert tx.status == STATUS_COMPLETED
        assert tx.kind == KIND_VIP
        assert tx.amount == Decimal("19.90")
        assert tx.tier_id == "vip-silver"
        assert gateway.checkouts == []

        again = await workflow.complete_activation("user-1", "vip-silver", "pay_direct_1")
        assert again.applied is False
        assert await _count_transactions(db) == 1

    async def test_reference_owned_by_another_user(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        opened = await workflow.open_transaction("user-1", KIND_VIP, tier_id="vip-gold")

        with pytest.raises(ValidationError):
            await workflow.complete_activation("user-2", "vip-gold", opened.external_payment_ref)

        tx = await ledger_store.get_by_payment_ref(db, opened.external_payment_ref)
        await db.refresh(tx)
        assert tx.status == STATUS_PENDING
        assert await vip_store.get_entitlement(db, "user-2") is None

    async def test_unknown_tier(self, db, gateway, locks):
        workflow = TransactionWorkflow(db, gateway, locks=locks)
        with pytest.raises(TierNotFound):
            await workflow.complete_activation("user-1", "vip-none", "pay_direct_2")
        assert await _count_transactions(db) == 0

    async def test_concurrent_activation_and_webhook_apply_once(self, session_factory, gateway, dispatcher, locks):
        async with session_factory() as db:
            opened = await TransactionWorkflow(db, gateway, dispatcher, locks).open_transaction(
                "user-1", KIND_VIP, tier_id="vip-gold",
            )

        async def activate():
            async with session_factory() as db:
                workflow = TransactionWorkflow(db, gateway, dispatcher, locks)
                return await workflow.complete_activation("user-1", "vip-gold", opened.external_payment_ref)

        async def deliver():
            async with session_factory() as db:
                workflow = TransactionWorkflow(db, gateway, dispatcher, locks)
                return await workflow.finalize(opened.external_payment_ref, OUTCOME_SUCCEEDED)

        results = await asyncio.gather(activate(), deliver())
        assert sorted(r.applied for r in results) == [False, True]

        async with session_factory() as db:
            ent = await vip_store.get_entitlement(db, "user-1")
            assert ent.reward_balance == 25_000


class TestLedgerQueries:
    async def _seed(self, db):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        rows = [
            ("cs_a", KIND_VIP, Decimal("9.90"), base),
            ("cs_b", KIND_COINS, Decimal("5.00"), base + timedelta(hours=1)),
            ("cs_c", KIND_VIP, Decimal("19.90"), base + timedelta(hours=2)),
        ]
        for ref, kind, amount, created in rows:
            await ledger_store.create_transaction(
                db, user_id="user-1", kind=kind, amount=amount, external_payment_ref=ref, now=created,
            )
        await ledger_store.create_transaction(
            db, user_id="user-2", kind=KIND_VIP, amount=Decimal("9.90"), external_payment_ref="cs_other",
        )
        await db.commit()

        for ref in ("cs_a", "cs_b"):
            tx = await ledger_store.get_by_payment_ref(db, ref)
            await ledger_store.mark_terminal(db, tx.id, STATUS_COMPLETED)
        await db.commit()

    async def test_newest_first(self, db):
        await self._seed(db)
        rows = await ledger_store.list_user_transactions(db, "user-1")
        assert [r.external_payment_ref for r in rows] == ["cs_c", "cs_b", "cs_a"]

    async def test_filters_and_paging(self, db):
        await self._seed(db)
        vip = await ledger_store.list_user_transactions(db, "user-1", kind=KIND_VIP)
        assert [r.external_payment_ref for r in vip] == ["cs_c", "cs_a"]

        pending = await ledger_store.list_user_transactions(db, "user-1", status=STATUS_PENDING)
        assert [r.external_payment_ref for r in pending] == ["cs_c"]

        page = await ledger_store.list_user_transactions(db, "user-1", limit=1, offset=1)
        assert [r.external_payment_ref for r in page] == ["cs_b"]

    async def test_stats(self, db):
        await self._seed(db)
        stats = await ledger_store.get_transaction_stats(db, "user-1")
        assert stats["total_spent"] == Decimal("14.90")
        assert stats["transaction_count"] == 3
        assert stats["last_transaction"].external_payment_ref == "cs_c"

    async def test_stats_for_unknown_user(self, db):
        stats = await ledger_store.get_transaction_stats(db, "nobody")
        assert stats == {"total_spent": Decimal("0.00"), "transaction_count": 0, "last_transaction": None}

    async def test_mark_terminal_rejects_invalid_target(self, db):
        await self._seed(db)
        tx = await ledger_store.get_by_payment_ref(db, "cs_c")
        with pytest.raises(ValueError, match="Invalid transition"):
            await ledger_store.mark_terminal(db, tx.id, STATUS_PENDING)
