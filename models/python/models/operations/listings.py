"""Listing reads and the inventory guard.

``listing_take_quantity`` and ``listing_restore_quantity`` are the only code
paths that change a listing's quantities. Both run inside a store unit of
work, where the store applies them as conditional updates; nothing here
reads a quantity and writes it back.
"""

import logging
from typing import Optional

from models.entities.couchbase.listings import Listing
from models.stores.interface import LedgerStore, UnitOfWork

logger = logging.getLogger(__name__)


async def listing_get(store: LedgerStore, listing_id: str) -> Optional[Listing]:
    return await store.get_listing(listing_id)


async def listing_put(store: LedgerStore, listing: Listing) -> Listing:
    return await store.put_listing(listing)


def listing_check_purchasable(listing: Optional[Listing], quantity: int) -> Optional[str]:
    """Read-only pre-check. Returns an error message or None.

    Advisory only: availability can change before settlement, which
    re-checks inside its atomic unit.
    """
    if listing is None or not listing.data.is_active:
        return "Listing not available"
    if quantity > listing.data.available_quantity:
        return (
            f"Requested quantity {quantity} exceeds available quantity "
            f"{listing.data.available_quantity}"
        )
    return None


async def listing_take_quantity(uow: UnitOfWork, listing_id: str, quantity: int) -> bool:
    """Decrement availability by ``quantity`` iff enough remains."""
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")
    taken = await uow.take_available(listing_id, quantity)
    if not taken:
        logger.info(f"Inventory guard refused {quantity} from listing {listing_id}")
    return taken


async def listing_restore_quantity(uow: UnitOfWork, listing_id: str, quantity: int) -> bool:
    """Give ``quantity`` back to a listing, e.g. after a refund."""
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")
    restored = await uow.restore_available(listing_id, quantity)
    if not restored:
        logger.warning(f"Inventory guard could not restore {quantity} to missing listing {listing_id}")
    return restored
