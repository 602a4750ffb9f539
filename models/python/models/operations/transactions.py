import hashlib
import secrets
from typing import List, Optional

from models.entities.couchbase.transactions import Transaction
from models.stores.interface import LedgerStore


def settlement_key_for_payment(external_order_id: str, external_payment_id: str) -> str:
    return f"payment:{external_order_id}|{external_payment_id}"


def settlement_key_for_direct(idempotency_key: Optional[str] = None) -> str:
    return f"direct:{idempotency_key or secrets.token_hex(16)}"


def transaction_key(settlement_key: str) -> str:
    """Deterministic document key, so the store's key uniqueness enforces idempotency."""
    return "txn_" + hashlib.sha256(settlement_key.encode("utf-8")).hexdigest()[:32]


def new_transaction_id() -> str:
    return f"TXN-{secrets.token_hex(6).upper()}"


async def transaction_get(store: LedgerStore, key: str) -> Optional[Transaction]:
    return await store.get_transaction(key)


async def transaction_get_by_order(store: LedgerStore, external_order_id: str) -> List[Transaction]:
    return await store.find_transactions_by_order(external_order_id)


async def transaction_get_by_buyer(store: LedgerStore, buyer_id: str) -> List[Transaction]:
    return await store.find_transactions_by_buyer(buyer_id)


async def transaction_get_requiring_reconciliation(store: LedgerStore) -> List[Transaction]:
    return await store.find_transactions_requiring_reconciliation()
