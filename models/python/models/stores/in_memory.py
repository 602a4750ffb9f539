"""
In-memory ledger store.

Useful for tests and local development. All state is lost when the process
exits and the atomic unit is serialised by a store-wide lock, so it is only
correct for a single process; use the Couchbase store for anything that is
horizontally scaled.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from models.entities.couchbase.listings import Listing
from models.entities.couchbase.transactions import Transaction

from .exceptions import DuplicateKeyError
from .interface import LedgerStore, R, UnitOfWork

logger = logging.getLogger(__name__)


def _copy(item):
    return item.model_copy(deep=True) if item is not None else None


class _InMemoryUnitOfWork(UnitOfWork):
    def __init__(self, store: "InMemoryLedgerStore") -> None:
        self._store = store
        self._listings: Dict[str, Listing] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._inserted: List[str] = []

    def _listing(self, listing_id: str) -> Optional[Listing]:
        if listing_id not in self._listings:
            current = self._store._listings.get(listing_id)
            if current is None:
                return None
            self._listings[listing_id] = _copy(current)
        return self._listings[listing_id]

    def _order_claimed_by_other(self, external_order_id: str, transaction_key: str) -> bool:
        owner = self._store._orders.get(external_order_id)
        if owner is not None and owner != transaction_key:
            return True
        return any(
            t.data.external_order_id == external_order_id and key != transaction_key
            for key, t in self._transactions.items()
            if key in self._inserted
        )

    def _certificate_taken(self, number: str) -> bool:
        if number in self._store._certificates:
            return True
        return any(
            t.data.certificate_number == number
            for key, t in self._transactions.items()
            if key in self._inserted
        )

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return _copy(self._listing(listing_id))

    async def take_available(self, listing_id: str, quantity: int) -> bool:
        # yield so concurrent callers actually queue on the store lock
        await asyncio.sleep(0)
        listing = self._listing(listing_id)
        if listing is None or listing.data.available_quantity < quantity:
            return False
        listing.data.available_quantity -= quantity
        listing.data.updated_at = datetime.now(timezone.utc)
        return True

    async def restore_available(self, listing_id: str, quantity: int) -> bool:
        await asyncio.sleep(0)
        listing = self._listing(listing_id)
        if listing is None:
            return False
        restored = listing.data.available_quantity + quantity
        if restored > listing.data.total_quantity:
            logger.warning(
                f"Restoring {quantity} to listing {listing_id} would exceed total "
                f"{listing.data.total_quantity} (available {listing.data.available_quantity}); capping"
            )
            restored = listing.data.total_quantity
        listing.data.available_quantity = restored
        listing.data.updated_at = datetime.now(timezone.utc)
        return True

    async def get_transaction(self, transaction_key: str) -> Optional[Transaction]:
        if transaction_key in self._transactions:
            return _copy(self._transactions[transaction_key])
        return _copy(self._store._transactions.get(transaction_key))

    async def insert_transaction(self, transaction: Transaction) -> None:
        if transaction.id in self._store._transactions or transaction.id in self._transactions:
            raise DuplicateKeyError("transaction", transaction.id)
        order_id = transaction.data.external_order_id
        if order_id and self._order_claimed_by_other(order_id, transaction.id):
            raise DuplicateKeyError("order", order_id)
        number = transaction.data.certificate_number
        if number and self._certificate_taken(number):
            raise DuplicateKeyError("certificate", number)
        now = datetime.now(timezone.utc)
        transaction = _copy(transaction)
        transaction.data.created_at = transaction.data.created_at or now
        transaction.data.updated_at = now
        self._transactions[transaction.id] = transaction
        self._inserted.append(transaction.id)

    async def replace_transaction(self, transaction: Transaction) -> None:
        transaction = _copy(transaction)
        transaction.data.updated_at = datetime.now(timezone.utc)
        self._transactions[transaction.id] = transaction

    def commit(self) -> None:
        self._store._listings.update(self._listings)
        for key, transaction in self._transactions.items():
            self._store._transactions[key] = transaction
            if transaction.data.external_order_id:
                self._store._orders.setdefault(transaction.data.external_order_id, key)
            if transaction.data.certificate_number:
                self._store._certificates[transaction.data.certificate_number] = key


class InMemoryLedgerStore(LedgerStore):
    """
    Dictionary-backed store.

    Thread-safety:
        Not thread-safe. Safe for concurrent coroutines on one event loop;
        ``run_atomic`` holds an asyncio lock for the whole unit of work.
    """

    def __init__(self) -> None:
        self._listings: Dict[str, Listing] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._certificates: Dict[str, str] = {}
        self._orders: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def run_atomic(self, work: Callable[[UnitOfWork], Awaitable[R]]) -> R:
        async with self._lock:
            uow = _InMemoryUnitOfWork(self)
            result = await work(uow)
            uow.commit()
            return result

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return _copy(self._listings.get(listing_id))

    async def put_listing(self, listing: Listing) -> Listing:
        now = datetime.now(timezone.utc)
        async with self._lock:
            stored = _copy(listing)
            stored.data.created_at = stored.data.created_at or now
            stored.data.updated_at = now
            self._listings[stored.id] = stored
        return _copy(stored)

    async def get_transaction(self, transaction_key: str) -> Optional[Transaction]:
        return _copy(self._transactions.get(transaction_key))

    def _select(self, predicate) -> List[Transaction]:
        found = [_copy(t) for t in self._transactions.values() if predicate(t.data)]
        return sorted(found, key=lambda t: t.data.created_at, reverse=True)

    async def find_transactions_by_order(self, external_order_id: str) -> List[Transaction]:
        return self._select(lambda d: d.external_order_id == external_order_id)

    async def find_transactions_by_buyer(self, buyer_id: str) -> List[Transaction]:
        return self._select(lambda d: d.buyer_id == buyer_id)

    async def find_transactions_by_listing(self, listing_id: str) -> List[Transaction]:
        return self._select(lambda d: d.listing_id == listing_id)

    async def find_transactions_requiring_reconciliation(self) -> List[Transaction]:
        return self._select(lambda d: d.reconciliation_required)
