"""
Ledger store interface.

The store persists Listings and Transactions and offers one atomic primitive,
:meth:`LedgerStore.run_atomic`, which runs a unit of work against a
consistent view and applies all of its writes or none of them. Listing
quantities change only through the conditional operations on
:class:`UnitOfWork`.

Unique indexes:
    - transaction document key (derived from the settlement idempotency key)
    - external_order_id (one settled or failed transaction per gateway order)
    - certificate_number
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, TypeVar

from models.entities.couchbase.listings import Listing
from models.entities.couchbase.transactions import Transaction

R = TypeVar("R")


class UnitOfWork(ABC):
    """Reads and staged writes inside one atomic store operation.

    Implementations must tolerate the callback being run more than once
    (the Couchbase backend retries on write-write conflicts), so callbacks
    must not have side effects outside the unit of work.
    """

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        pass

    @abstractmethod
    async def take_available(self, listing_id: str, quantity: int) -> bool:
        """Decrement ``available_quantity`` by ``quantity`` iff it is at least ``quantity``."""

    @abstractmethod
    async def restore_available(self, listing_id: str, quantity: int) -> bool:
        """Increment ``available_quantity``; False if the listing does not exist."""

    @abstractmethod
    async def get_transaction(self, transaction_key: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> None:
        """Stage an insert.

        Raises DuplicateKeyError (possibly at commit) when the key, the
        external order or the certificate number is already taken.
        """

    @abstractmethod
    async def replace_transaction(self, transaction: Transaction) -> None:
        pass


class LedgerStore(ABC):
    @abstractmethod
    async def run_atomic(self, work: Callable[[UnitOfWork], Awaitable[R]]) -> R:
        """Run ``work`` and commit its staged writes atomically.

        Raises:
            DuplicateKeyError: a unique index rejected an insert.
            StoreError: the unit could not be committed.
        """

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        pass

    @abstractmethod
    async def put_listing(self, listing: Listing) -> Listing:
        """Create or overwrite a listing. Used by producer tooling and seeding only."""

    @abstractmethod
    async def get_transaction(self, transaction_key: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def find_transactions_by_order(self, external_order_id: str) -> List[Transaction]:
        pass

    @abstractmethod
    async def find_transactions_by_buyer(self, buyer_id: str) -> List[Transaction]:
        pass

    @abstractmethod
    async def find_transactions_by_listing(self, listing_id: str) -> List[Transaction]:
        pass

    @abstractmethod
    async def find_transactions_requiring_reconciliation(self) -> List[Transaction]:
        pass
