"""
Seeding script for GreenLedger.

Populates the ledger store with demo green-hydrogen listings from three
producers, covering INR and EUR pricing and one sold-out listing.

Run standalone:   python seed.py   (uses STORE_BACKEND)
Or via API:       POST /api/seed
"""

import asyncio
from decimal import Decimal

from models.entities.couchbase.listings import Listing, ListingData
from models.operations.listings import listing_put
from models.stores import LedgerStore
from utils import log

logger = log.get_logger(__name__)


# ---------------------------------------------------------------------------
# Seed data definitions
# ---------------------------------------------------------------------------

LISTINGS = [
    {
        "key": "listing-solar-rajasthan",
        "producer_id": "producer-1",
        "application_id": "app-1001",
        "title": "Solar electrolysis, Jodhpur",
        "price": Decimal("300"),
        "currency": "INR",
        "total_quantity": 1000,
        "available_quantity": 1000,
        "energy_source": "solar",
        "carbon_intensity": 0.8,
    },
    {
        "key": "listing-wind-gujarat",
        "producer_id": "producer-1",
        "application_id": "app-1002",
        "title": "Offshore wind electrolysis, Kutch",
        "price": Decimal("285.50"),
        "currency": "INR",
        "total_quantity": 2500,
        "available_quantity": 2500,
        "energy_source": "wind",
        "carbon_intensity": 0.6,
    },
    {
        "key": "listing-hydro-himachal",
        "producer_id": "producer-2",
        "application_id": "app-1003",
        "title": "Run-of-river hydro electrolysis",
        "price": Decimal("310.25"),
        "currency": "INR",
        "total_quantity": 400,
        "available_quantity": 120,
        "energy_source": "hydro",
        "carbon_intensity": 0.4,
    },
    {
        "key": "listing-wind-northsea",
        "producer_id": "producer-3",
        "application_id": "app-2001",
        "title": "North Sea wind electrolysis",
        "price": Decimal("4.15"),
        "currency": "EUR",
        "total_quantity": 5000,
        "available_quantity": 5000,
        "energy_source": "wind",
        "carbon_intensity": 0.5,
    },
    {
        "key": "listing-solar-soldout",
        "producer_id": "producer-2",
        "application_id": "app-1004",
        "title": "Rooftop solar pilot (sold out)",
        "price": Decimal("295"),
        "currency": "INR",
        "total_quantity": 50,
        "available_quantity": 0,
        "energy_source": "solar",
        "carbon_intensity": 0.9,
    },
]


# ---------------------------------------------------------------------------
# Seed runner
# ---------------------------------------------------------------------------

async def run_seed(store: LedgerStore) -> dict:
    """Insert all seed data. Returns summary counts."""
    counts = {"listings": 0}

    for spec in LISTINGS:
        spec = dict(spec)
        key = spec.pop("key")
        data = ListingData(**spec, created_by_user_id=spec["producer_id"])
        await listing_put(store, Listing(id=key, data=data))
        counts["listings"] += 1
    logger.info(f"Seeded {counts['listings']} listings")

    return counts


# ---------------------------------------------------------------------------
# Standalone entrypoint
# ---------------------------------------------------------------------------

async def _main():
    import conf
    from main import build_store

    store = await build_store(conf.get_store_backend())
    result = await run_seed(store)
    print(f"Seed complete: {result}")


if __name__ == "__main__":
    asyncio.run(_main())
