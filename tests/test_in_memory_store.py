"""
Unit tests for InMemoryLedgerStore: atomic units, unique indexes, queries.
"""

import asyncio
import logging
from decimal import Decimal

import pytest

from models.entities.couchbase.transactions import Transaction, TransactionData
from models.stores import DuplicateKeyError, InMemoryLedgerStore


def _transaction(key="txn_1", certificate=None, buyer_id="buyer-1", order_id="order_1", flagged=False):
    return Transaction(
        id=key,
        data=TransactionData(
            transaction_id=f"TXN-{key}",
            settlement_key=f"payment:{order_id}|{key}",
            buyer_id=buyer_id,
            listing_id="listing-1",
            quantity=1,
            price_per_unit=Decimal("300"),
            total_amount=Decimal("300"),
            amount_minor_units=30000,
            payment_status="failed" if flagged else "completed",
            status="cancelled" if flagged else "completed",
            external_order_id=order_id,
            certificate_number=certificate,
            reconciliation_required=flagged,
        ),
    )


class TestRunAtomic:
    @pytest.mark.asyncio
    async def test_commits_all_writes(self, store, listing):
        async def work(uow):
            assert await uow.take_available(listing.id, 10)
            await uow.insert_transaction(_transaction(certificate="CERT-2026-0001"))
            return "done"

        assert await store.run_atomic(work) == "done"
        assert (await store.get_listing(listing.id)).data.available_quantity == 990
        assert (await store.get_transaction("txn_1")).data.certificate_number == "CERT-2026-0001"

    @pytest.mark.asyncio
    async def test_exception_discards_every_write(self, store, listing):
        async def work(uow):
            await uow.take_available(listing.id, 10)
            await uow.insert_transaction(_transaction())
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await store.run_atomic(work)

        assert (await store.get_listing(listing.id)).data.available_quantity == 1000
        assert await store.get_transaction("txn_1") is None

    @pytest.mark.asyncio
    async def test_take_refuses_more_than_available(self, store, listing_factory):
        listing = await listing_factory(total=10, available=3)

        async def work(uow):
            return await uow.take_available(listing.id, 4)

        assert await store.run_atomic(work) is False
        assert (await store.get_listing(listing.id)).data.available_quantity == 3

    @pytest.mark.asyncio
    async def test_restore_is_capped_at_total(self, store, listing_factory, caplog):
        listing = await listing_factory(total=10, available=8)

        async def work(uow):
            return await uow.restore_available(listing.id, 5)

        with caplog.at_level(logging.WARNING, logger="models.stores.in_memory"):
            assert await store.run_atomic(work) is True

        assert (await store.get_listing(listing.id)).data.available_quantity == 10
        assert any("capping" in r.getMessage() and listing.id in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_restore_within_total_does_not_warn(self, store, listing_factory, caplog):
        listing = await listing_factory(total=10, available=5)

        async def work(uow):
            return await uow.restore_available(listing.id, 5)

        with caplog.at_level(logging.WARNING, logger="models.stores.in_memory"):
            await store.run_atomic(work)

        assert (await store.get_listing(listing.id)).data.available_quantity == 10
        assert not [r for r in caplog.records if r.name == "models.stores.in_memory"]

    @pytest.mark.asyncio
    async def test_concurrent_units_do_not_oversell(self, store, listing_factory):
        listing = await listing_factory(total=5)

        async def take_one(uow):
            return await uow.take_available(listing.id, 1)

        results = await asyncio.gather(*[store.run_atomic(take_one) for _ in range(20)])

        assert results.count(True) == 5
        assert (await store.get_listing(listing.id)).data.available_quantity == 0


class TestUniqueIndexes:
    @pytest.mark.asyncio
    async def test_duplicate_transaction_key(self, store):
        async def insert(uow):
            await uow.insert_transaction(_transaction())

        await store.run_atomic(insert)
        with pytest.raises(DuplicateKeyError) as exc_info:
            await store.run_atomic(insert)
        assert exc_info.value.kind == "transaction"

    @pytest.mark.asyncio
    async def test_duplicate_certificate_number(self, store):
        def insert(key):
            async def work(uow):
                await uow.insert_transaction(_transaction(key=key, certificate="CERT-2026-0042", order_id=f"order_{key}"))
            return work

        await store.run_atomic(insert("txn_1"))
        with pytest.raises(DuplicateKeyError) as exc_info:
            await store.run_atomic(insert("txn_2"))

        assert exc_info.value.kind == "certificate"
        assert await store.get_transaction("txn_2") is None

    @pytest.mark.asyncio
    async def test_second_payment_for_an_order(self, store, listing):
        def settle(key):
            async def work(uow):
                await uow.take_available(listing.id, 1)
                await uow.insert_transaction(_transaction(key=key, order_id="order_1"))
            return work

        await store.run_atomic(settle("txn_1"))
        with pytest.raises(DuplicateKeyError) as exc_info:
            await store.run_atomic(settle("txn_2"))

        assert exc_info.value.kind == "order"
        assert exc_info.value.key == "order_1"
        assert await store.get_transaction("txn_2") is None
        assert (await store.get_listing(listing.id)).data.available_quantity == 999

    @pytest.mark.asyncio
    async def test_order_claimed_within_one_unit(self, store):
        async def work(uow):
            await uow.insert_transaction(_transaction(key="txn_1", order_id="order_1"))
            await uow.insert_transaction(_transaction(key="txn_2", order_id="order_1"))

        with pytest.raises(DuplicateKeyError) as exc_info:
            await store.run_atomic(work)

        assert exc_info.value.kind == "order"
        assert await store.get_transaction("txn_1") is None

    @pytest.mark.asyncio
    async def test_transactions_without_an_order_make_no_claim(self, store):
        async def work(uow):
            await uow.insert_transaction(_transaction(key="txn_1", order_id=None))
            await uow.insert_transaction(_transaction(key="txn_2", order_id=None))

        await store.run_atomic(work)

        assert await store.get_transaction("txn_2") is not None


class TestQueries:
    @pytest.mark.asyncio
    async def test_lookups(self, store):
        async def seed(uow):
            await uow.insert_transaction(_transaction("txn_1", buyer_id="buyer-1", order_id="order_a"))
            await uow.insert_transaction(_transaction("txn_2", buyer_id="buyer-2", order_id="order_b", flagged=True))

        await store.run_atomic(seed)

        assert [t.id for t in await store.find_transactions_by_buyer("buyer-1")] == ["txn_1"]
        assert [t.id for t in await store.find_transactions_by_order("order_b")] == ["txn_2"]
        assert len(await store.find_transactions_by_listing("listing-1")) == 2
        assert [t.id for t in await store.find_transactions_requiring_reconciliation()] == ["txn_2"]

    @pytest.mark.asyncio
    async def test_reads_return_copies(self, store, listing):
        copy = await store.get_listing(listing.id)
        copy.data.available_quantity = 0
        assert (await store.get_listing(listing.id)).data.available_quantity == 1000

    def test_fresh_store_is_empty(self):
        assert InMemoryLedgerStore()._transactions == {}
