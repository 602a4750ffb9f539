"""
Couchbase ledger store.

``run_atomic`` is a Couchbase multi-document ACID transaction: the listing
decrement, the transaction insert and the order and certificate index
inserts either all commit or none do, and write-write conflicts on the
listing document are resolved by the SDK retrying the unit of work.
Uniqueness is key-native: transactions are keyed by their settlement key,
every issued certificate number has a document in the ``certificates``
collection and a gateway order is claimed by the first transaction that
settles or flags it through a document in the ``order_claims`` collection.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from couchbase.exceptions import (
    DocumentNotFoundException,
    TransactionCommitAmbiguous,
    TransactionExpired,
    TransactionFailed,
)

from clients.couchbase.keyspace import get_keyspace
from models.entities.couchbase.listings import Listing
from models.entities.couchbase.transactions import Transaction

from .exceptions import DuplicateKeyError, StoreError
from .interface import LedgerStore, R, UnitOfWork

logger = logging.getLogger(__name__)

CERTIFICATES_COLLECTION = "certificates"
ORDER_CLAIMS_COLLECTION = "order_claims"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _CouchbaseUnitOfWork(UnitOfWork):
    def __init__(self, ctx: Any, collections: Dict[str, Any]) -> None:
        self._ctx = ctx
        self._collections = collections
        self._docs: Dict[Tuple[str, str], Any] = {}
        self.attempted_inserts: List[Tuple[str, str, str]] = []

    async def _get(self, collection: str, key: str):
        cache_key = (collection, key)
        if cache_key not in self._docs:
            try:
                self._docs[cache_key] = await self._ctx.get(self._collections[collection], key)
            except DocumentNotFoundException:
                return None
        return self._docs[cache_key]

    async def _replace(self, collection: str, key: str, doc: dict) -> None:
        current = await self._get(collection, key)
        self._docs[(collection, key)] = await self._ctx.replace(current, doc)

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        res = await self._get(Listing._collection_name, listing_id)
        if res is None:
            return None
        return Listing(id=listing_id, data=res.content_as[dict])

    async def take_available(self, listing_id: str, quantity: int) -> bool:
        res = await self._get(Listing._collection_name, listing_id)
        if res is None:
            return False
        doc = res.content_as[dict]
        if doc["available_quantity"] < quantity:
            return False
        doc["available_quantity"] -= quantity
        doc["updated_at"] = _now_iso()
        await self._replace(Listing._collection_name, listing_id, doc)
        return True

    async def restore_available(self, listing_id: str, quantity: int) -> bool:
        res = await self._get(Listing._collection_name, listing_id)
        if res is None:
            return False
        doc = res.content_as[dict]
        restored = doc["available_quantity"] + quantity
        if restored > doc["total_quantity"]:
            logger.warning(
                f"Restoring {quantity} to listing {listing_id} would exceed total "
                f"{doc['total_quantity']} (available {doc['available_quantity']}); capping"
            )
            restored = doc["total_quantity"]
        doc["available_quantity"] = restored
        doc["updated_at"] = _now_iso()
        await self._replace(Listing._collection_name, listing_id, doc)
        return True

    async def get_transaction(self, transaction_key: str) -> Optional[Transaction]:
        res = await self._get(Transaction._collection_name, transaction_key)
        if res is None:
            return None
        return Transaction(id=transaction_key, data=res.content_as[dict])

    async def insert_transaction(self, transaction: Transaction) -> None:
        now = datetime.now(timezone.utc)
        transaction.data.created_at = transaction.data.created_at or now
        transaction.data.updated_at = now

        self.attempted_inserts.append(("transaction", Transaction._collection_name, transaction.id))
        await self._ctx.insert(
            self._collections[Transaction._collection_name], transaction.id, transaction.to_document()
        )
        order_id = transaction.data.external_order_id
        if order_id:
            self.attempted_inserts.append(("order", ORDER_CLAIMS_COLLECTION, order_id))
            await self._ctx.insert(
                self._collections[ORDER_CLAIMS_COLLECTION], order_id, {"transaction_id": transaction.id}
            )
        number = transaction.data.certificate_number
        if number:
            self.attempted_inserts.append(("certificate", CERTIFICATES_COLLECTION, number))
            await self._ctx.insert(
                self._collections[CERTIFICATES_COLLECTION], number, {"transaction_id": transaction.id}
            )

    async def replace_transaction(self, transaction: Transaction) -> None:
        transaction.data.updated_at = datetime.now(timezone.utc)
        await self._replace(Transaction._collection_name, transaction.id, transaction.to_document())


class CouchbaseLedgerStore(LedgerStore):
    async def _collections(self) -> Dict[str, Any]:
        names = (
            Listing._collection_name,
            Transaction._collection_name,
            ORDER_CLAIMS_COLLECTION,
            CERTIFICATES_COLLECTION,
        )
        return {name: await get_keyspace(name).get_collection() for name in names}

    async def run_atomic(self, work: Callable[[UnitOfWork], Awaitable[R]]) -> R:
        from clients.couchbase.config import get_cluster

        cluster = await get_cluster()
        collections = await self._collections()
        outcome: Dict[str, Any] = {}

        async def txn_logic(ctx) -> None:
            uow = _CouchbaseUnitOfWork(ctx, collections)
            outcome["uow"] = uow
            outcome["result"] = await work(uow)

        try:
            await cluster.transactions.run(txn_logic)
        except TransactionCommitAmbiguous as e:
            raise StoreError(f"Commit outcome unknown: {e}", ambiguous=True) from e
        except (TransactionFailed, TransactionExpired) as e:
            uow = outcome.get("uow")
            if uow is not None:
                await self._raise_duplicate(uow, e)
            raise StoreError(f"Transaction failed: {e}") from e
        return outcome["result"]

    async def _raise_duplicate(self, uow: _CouchbaseUnitOfWork, cause: Exception) -> None:
        """Turn a failed transaction into DuplicateKeyError when an attempted insert key now exists."""
        for kind, collection, key in uow.attempted_inserts:
            if await get_keyspace(collection).exists(key):
                raise DuplicateKeyError(kind, key) from cause

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return await Listing.get(listing_id)

    async def put_listing(self, listing: Listing) -> Listing:
        return await Listing.create_or_update(listing.id, listing.data, user_id=listing.data.producer_id)

    async def get_transaction(self, transaction_key: str) -> Optional[Transaction]:
        return await Transaction.get(transaction_key)

    async def find_transactions_by_order(self, external_order_id: str) -> List[Transaction]:
        return await Transaction.query("external_order_id = $order_id", order_id=external_order_id)

    async def find_transactions_by_buyer(self, buyer_id: str) -> List[Transaction]:
        return await Transaction.query("buyer_id = $buyer_id", buyer_id=buyer_id)

    async def find_transactions_by_listing(self, listing_id: str) -> List[Transaction]:
        return await Transaction.query("listing_id = $listing_id", listing_id=listing_id)

    async def find_transactions_requiring_reconciliation(self) -> List[Transaction]:
        return await Transaction.query("reconciliation_required = true")
