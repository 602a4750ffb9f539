"""
Tests for the TigerBeetle settlement journal and the engine's handling of it.

The TigerBeetle client is replaced by a recorder, so no cluster is needed,
but the ``tigerbeetle`` package must be importable for the journal tests.
"""

from typing import List

import pytest

from settlement import SettlementEngine, SettlementOptions


class RecordingJournal:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.entries: List[tuple] = []

    async def record_settlement(self, transaction) -> None:
        if self.fail:
            raise RuntimeError("ledger unreachable")
        self.entries.append(("settlement", transaction.id))

    async def record_refund(self, transaction) -> None:
        if self.fail:
            raise RuntimeError("ledger unreachable")
        self.entries.append(("refund", transaction.id))


class FakeTigerBeetle:
    def __init__(self) -> None:
        self.accounts = []
        self.transfers = []

    def create_accounts(self, accounts):
        self.accounts.extend(accounts)
        return []

    def create_transfers(self, transfers):
        self.transfers.extend(transfers)
        return []


class TestEngineJournaling:
    @pytest.mark.asyncio
    async def test_settlement_and_refund_are_journaled(self, store, gateway, listing):
        journal = RecordingJournal()
        engine = SettlementEngine(
            store, gateway, options=SettlementOptions(order_create_backoff_seconds=0), journal=journal
        )
        handle = await engine.create_order("buyer-1", listing.id, 5)
        payment_id, signature = gateway.capture(handle.external_order_id)
        args = (handle.external_order_id, payment_id, signature, listing.id, 5, "buyer-1")

        settled = (await engine.verify_and_settle(*args)).transaction
        await engine.verify_and_settle(*args)
        await engine.refund(settled.id, actor_id="certifier-1")

        assert journal.entries == [("settlement", settled.id), ("refund", settled.id)]

    @pytest.mark.asyncio
    async def test_journal_failure_does_not_undo_settlement(self, store, gateway, listing):
        engine = SettlementEngine(
            store,
            gateway,
            options=SettlementOptions(order_create_backoff_seconds=0),
            journal=RecordingJournal(fail=True),
        )
        handle = await engine.create_order("buyer-1", listing.id, 5)
        payment_id, signature = gateway.capture(handle.external_order_id)

        result = await engine.verify_and_settle(
            handle.external_order_id, payment_id, signature, listing.id, 5, "buyer-1"
        )

        assert result.transaction.data.payment_status == "completed"
        assert (await store.get_listing(listing.id)).data.available_quantity == 995


class TestTigerBeetleJournal:
    @pytest.fixture
    def ledger(self, monkeypatch):
        pytest.importorskip("tigerbeetle")
        from clients.tigerbeetle import client as tb_client

        fake = FakeTigerBeetle()
        monkeypatch.setattr(tb_client, "_client_instance", fake)
        return fake

    @pytest.mark.asyncio
    async def test_settlement_posts_two_legs_through_escrow(self, ledger, purchase, listing):
        from clients.tigerbeetle import (
            TRANSFER_CODE_PURCHASE,
            TRANSFER_CODE_SETTLEMENT,
            ledger_for,
            platform_account_id,
            transfer_id,
        )
        from settlement.journal import TigerBeetleJournal

        settled = (await purchase("buyer-1", listing.id, 50)).transaction

        await TigerBeetleJournal().record_settlement(settled)

        escrow = platform_account_id(ledger_for("INR"))
        purchase_leg, settlement_leg = ledger.transfers
        assert purchase_leg.id == transfer_id(settled.id, "purchase")
        assert purchase_leg.credit_account_id == escrow
        assert purchase_leg.code == TRANSFER_CODE_PURCHASE
        assert settlement_leg.debit_account_id == escrow
        assert settlement_leg.code == TRANSFER_CODE_SETTLEMENT
        assert {t.amount for t in ledger.transfers} == {1_500_000}
        assert {t.ledger for t in ledger.transfers} == {356}
        assert len(ledger.accounts) == 3

    @pytest.mark.asyncio
    async def test_refund_mirrors_the_settlement(self, ledger, purchase, listing):
        from settlement.journal import TigerBeetleJournal

        settled = (await purchase("buyer-1", listing.id, 50)).transaction
        journal = TigerBeetleJournal()

        await journal.record_settlement(settled)
        await journal.record_refund(settled)

        purchase_leg, settlement_leg, clawback_leg, refund_leg = ledger.transfers
        assert clawback_leg.debit_account_id == settlement_leg.credit_account_id
        assert refund_leg.credit_account_id == purchase_leg.debit_account_id
        assert len({t.id for t in ledger.transfers}) == 4

    def test_ids_are_stable(self):
        pytest.importorskip("tigerbeetle")
        from clients.tigerbeetle import transfer_id, user_account_id

        assert transfer_id("txn_1", "purchase") == transfer_id("txn_1", "purchase")
        assert transfer_id("txn_1", "purchase") != transfer_id("txn_1", "settlement")
        assert 0 < user_account_id("buyer-1", 356, 1) < (1 << 128) - 1

    def test_unknown_currency(self):
        pytest.importorskip("tigerbeetle")
        from clients.tigerbeetle import ledger_for

        with pytest.raises(ValueError):
            ledger_for("XYZ")
