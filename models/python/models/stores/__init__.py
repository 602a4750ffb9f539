from .exceptions import DuplicateKeyError, StoreError
from .in_memory import InMemoryLedgerStore
from .interface import LedgerStore, UnitOfWork

# CouchbaseLedgerStore lives in models.stores.couchbase and needs the SDK.

__all__ = [
    "LedgerStore",
    "UnitOfWork",
    "InMemoryLedgerStore",
    "DuplicateKeyError",
    "StoreError",
]
