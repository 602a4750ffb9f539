"""
Tests for SettlementEngine.create_order: pricing, validation, gateway retries.
"""

from decimal import Decimal

import pytest

from clients.payments import GatewayRejectedError, GatewayTimeoutError
from settlement import NotFoundError, SettlementEngine, SettlementOptions, ValidationError


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_prices_the_order_exactly(self, engine, gateway, listing):
        handle = await engine.create_order("buyer-1", listing.id, 50)

        assert handle.total_amount == Decimal("15000")
        assert handle.amount_minor_units == 1_500_000
        assert handle.currency == "INR"
        assert handle.receipt.startswith("rcpt_")

        order = await gateway.get_external_order(handle.external_order_id)
        assert order.amount_minor_units == 1_500_000
        assert order.metadata["listing_id"] == listing.id
        assert order.metadata["buyer_id"] == "buyer-1"
        assert order.metadata["quantity"] == "50"
        assert order.metadata["unit_price"] == "300"

    @pytest.mark.asyncio
    async def test_does_not_hold_inventory(self, engine, store, listing):
        await engine.create_order("buyer-1", listing.id, 999)
        await engine.create_order("buyer-2", listing.id, 999)

        assert (await store.get_listing(listing.id)).data.available_quantity == 1000

    @pytest.mark.asyncio
    async def test_fractional_prices_round_half_up(self, engine, listing_factory):
        listing = await listing_factory(listing_id="cheap", price="0.125")
        handle = await engine.create_order("buyer-1", listing.id, 1)
        assert handle.total_amount == Decimal("0.125")
        assert handle.amount_minor_units == 13

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1, 2.5, "3", True, None])
    async def test_rejects_invalid_quantity(self, engine, gateway, listing, quantity):
        with pytest.raises(ValidationError):
            await engine.create_order("buyer-1", listing.id, quantity)
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_rejects_quantity_above_available(self, engine, listing):
        with pytest.raises(ValidationError, match="exceeds available quantity"):
            await engine.create_order("buyer-1", listing.id, 1001)

    @pytest.mark.asyncio
    async def test_unknown_listing(self, engine):
        with pytest.raises(NotFoundError):
            await engine.create_order("buyer-1", "missing", 1)

    @pytest.mark.asyncio
    async def test_sold_out_listing_is_not_found(self, engine, listing_factory):
        listing = await listing_factory(listing_id="gone", total=10, available=0)
        with pytest.raises(NotFoundError, match="Listing not available"):
            await engine.create_order("buyer-1", listing.id, 1)


class TestGatewayRetries:
    @pytest.mark.asyncio
    async def test_timeouts_are_retried_with_the_same_receipt(self, engine, gateway, listing):
        gateway.fail_next("create_external_order", GatewayTimeoutError("slow"))
        gateway.fail_next("create_external_order", GatewayTimeoutError("slow"))

        handle = await engine.create_order("buyer-1", listing.id, 5)

        assert gateway.calls == ["create_external_order"] * 3
        again = await gateway.create_external_order(handle.amount_minor_units, "INR", {}, handle.receipt)
        assert again.id == handle.external_order_id

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, store, gateway, listing):
        engine = SettlementEngine(
            store, gateway, options=SettlementOptions(order_create_max_attempts=2, order_create_backoff_seconds=0)
        )
        for _ in range(3):
            gateway.fail_next("create_external_order", GatewayTimeoutError("slow"))

        with pytest.raises(GatewayTimeoutError):
            await engine.create_order("buyer-1", listing.id, 5)
        assert gateway.calls == ["create_external_order"] * 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures, succeeds", [(0, True), (1, False)])
    async def test_single_attempt(self, store, gateway, listing, failures, succeeds):
        engine = SettlementEngine(
            store, gateway, options=SettlementOptions(order_create_max_attempts=1, order_create_backoff_seconds=0)
        )
        for _ in range(failures):
            gateway.fail_next("create_external_order", GatewayTimeoutError("slow"))

        if succeeds:
            assert (await engine.create_order("buyer-1", listing.id, 5)).external_order_id
        else:
            with pytest.raises(GatewayTimeoutError):
                await engine.create_order("buyer-1", listing.id, 5)
        assert gateway.calls == ["create_external_order"]

    @pytest.mark.asyncio
    async def test_rejections_are_not_retried(self, engine, gateway, listing):
        gateway.fail_next("create_external_order", GatewayRejectedError("card declined", code="declined"))

        with pytest.raises(GatewayRejectedError):
            await engine.create_order("buyer-1", listing.id, 5)
        assert gateway.calls == ["create_external_order"]
