"""
Shared pytest fixtures for the settlement service tests.

- Store fixtures (store, listing_factory, listing)
- Gateway fixtures (gateway: the in-process mock gateway)
- Engine fixtures (options, engine, purchase)
"""

from decimal import Decimal
from typing import Awaitable, Callable, Optional

import pytest
import pytest_asyncio

from clients.payments import MockGateway
from models.entities.couchbase.listings import Listing, ListingData
from models.stores import InMemoryLedgerStore
from settlement import CertificateIssuer, SettlementEngine, SettlementOptions, SettlementResult

SIGNING_SECRET = "test-signing-secret"


# ============================================================================
# Store fixtures
# ============================================================================


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def listing_factory(store: InMemoryLedgerStore) -> Callable[..., Awaitable[Listing]]:
    """Create and store a listing; defaults to 1000 kg at INR 300."""

    async def create(
        listing_id: str = "listing-1",
        price: str = "300",
        total: int = 1000,
        available: Optional[int] = None,
        currency: str = "INR",
        producer_id: str = "producer-1",
    ) -> Listing:
        listing = Listing(
            id=listing_id,
            data=ListingData(
                producer_id=producer_id,
                title=f"Listing {listing_id}",
                price=Decimal(price),
                currency=currency,
                total_quantity=total,
                available_quantity=total if available is None else available,
                energy_source="solar",
            ),
        )
        return await store.put_listing(listing)

    return create


@pytest_asyncio.fixture
async def listing(listing_factory) -> Listing:
    return await listing_factory()


# ============================================================================
# Gateway / engine fixtures
# ============================================================================


@pytest.fixture
def gateway() -> MockGateway:
    return MockGateway(SIGNING_SECRET)


@pytest.fixture
def options() -> SettlementOptions:
    return SettlementOptions(order_create_backoff_seconds=0)


@pytest.fixture
def engine(store, gateway, options) -> SettlementEngine:
    return SettlementEngine(store=store, gateway=gateway, issuer=CertificateIssuer(), options=options)


@pytest.fixture
def purchase(engine: SettlementEngine, gateway: MockGateway) -> Callable[..., Awaitable[SettlementResult]]:
    """Run create_order -> checkout -> verify_and_settle for one buyer."""

    async def run(buyer_id: str, listing_id: str, quantity: int) -> SettlementResult:
        handle = await engine.create_order(buyer_id, listing_id, quantity)
        payment_id, signature = gateway.capture(handle.external_order_id)
        return await engine.verify_and_settle(
            handle.external_order_id, payment_id, signature, listing_id, quantity, buyer_id
        )

    return run
