"""
Unit tests for StripeGateway against a stand-in for ``stripe.StripeClient``.

No network: the fake client records the params and options each resource
call receives and returns canned Stripe objects.
"""

import asyncio
import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe

from clients.payments import GatewayRejectedError, GatewayTimeoutError, InvalidSignatureError
from clients.payments.stripe_gateway import StripeGateway

WEBHOOK_SECRET = "whsec_test"


class FakeResource:
    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def _respond(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result

    create_async = _respond
    retrieve_async = _respond
    list_async = _respond


def _intent(**overrides):
    fields = dict(
        id="pi_123",
        amount=1_500_000,
        currency="inr",
        status="requires_payment_method",
        metadata={"listing_id": "listing-1", "quantity": "50", "receipt": "rcpt_abc"},
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _gateway(**resources) -> StripeGateway:
    client = SimpleNamespace(
        payment_intents=resources.get("payment_intents", FakeResource(_intent())),
        refunds=resources.get("refunds", FakeResource()),
        charges=resources.get("charges", FakeResource()),
    )
    return StripeGateway(
        api_key="sk_test_123",
        webhook_secret=WEBHOOK_SECRET,
        timeout_seconds=0.05,
        client=client,
    )


def _stripe_header(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class TestOrders:
    @pytest.mark.asyncio
    async def test_create_passes_receipt_as_idempotency_key(self):
        intents = FakeResource(_intent())
        gateway = _gateway(payment_intents=intents)

        order = await gateway.create_external_order(1_500_000, "INR", {"listing_id": "listing-1"}, "rcpt_abc")

        (_, kwargs), = intents.calls
        assert kwargs["options"] == {"idempotency_key": "rcpt_abc"}
        assert kwargs["params"]["amount"] == 1_500_000
        assert kwargs["params"]["currency"] == "inr"
        assert kwargs["params"]["metadata"]["receipt"] == "rcpt_abc"
        assert order.id == "pi_123"
        assert order.currency == "INR"
        assert order.receipt == "rcpt_abc"

    @pytest.mark.asyncio
    async def test_get_reads_metadata(self):
        gateway = _gateway()
        order = await gateway.get_external_order("pi_123")
        assert order.metadata["quantity"] == "50"
        assert order.receipt == "rcpt_abc"

    @pytest.mark.asyncio
    async def test_timeout_maps_to_gateway_timeout(self):
        gateway = _gateway(payment_intents=FakeResource(_intent(), delay=1.0))
        with pytest.raises(GatewayTimeoutError):
            await gateway.create_external_order(100, "INR", {}, "rcpt_1")

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_gateway_timeout(self):
        gateway = _gateway(payment_intents=FakeResource(error=stripe.APIConnectionError("network down")))
        with pytest.raises(GatewayTimeoutError):
            await gateway.create_external_order(100, "INR", {}, "rcpt_1")

    @pytest.mark.asyncio
    async def test_invalid_request_maps_to_rejection(self):
        error = stripe.InvalidRequestError("No such payment_intent", "id", code="resource_missing")
        gateway = _gateway(payment_intents=FakeResource(error=error))
        with pytest.raises(GatewayRejectedError) as exc_info:
            await gateway.get_external_order("pi_missing")
        assert exc_info.value.code == "resource_missing"


class TestRefundsAndPayments:
    @pytest.mark.asyncio
    async def test_refund_uses_charge_and_idempotency_key(self):
        refunds = FakeResource(SimpleNamespace(id="re_1", amount=60000, status="succeeded"))
        gateway = _gateway(refunds=refunds)

        refund = await gateway.refund("ch_1", 60000, {"transaction_id": "TXN-1"}, "refund-txn_1")

        (_, kwargs), = refunds.calls
        assert kwargs["params"]["charge"] == "ch_1"
        assert kwargs["options"] == {"idempotency_key": "refund-txn_1"}
        assert refund.id == "re_1"
        assert refund.payment_id == "ch_1"

    @pytest.mark.asyncio
    async def test_fetch_payments_lists_charges(self):
        charges = FakeResource(SimpleNamespace(data=[
            SimpleNamespace(id="ch_1", amount=60000, currency="inr", status="succeeded", refunded=False),
            SimpleNamespace(id="ch_2", amount=60000, currency="inr", status="failed", refunded=False),
        ]))
        gateway = _gateway(charges=charges)

        payments = await gateway.fetch_payments_for_order("pi_123")

        assert [p.id for p in payments] == ["ch_1", "ch_2"]
        assert all(p.order_id == "pi_123" and p.currency == "INR" for p in payments)


class TestWebhooks:
    def _payload(self) -> bytes:
        return json.dumps({
            "id": "evt_1",
            "object": "event",
            "type": "payment_intent.succeeded",
            "data": {"object": {
                "id": "pi_123",
                "object": "payment_intent",
                "latest_charge": "ch_1",
                "amount": 1_500_000,
                "currency": "inr",
                "metadata": {"listing_id": "listing-1", "buyer_id": "buyer-1", "quantity": "50"},
            }},
        }).encode()

    def test_valid_signature(self):
        payload = self._payload()
        event = _gateway().parse_webhook(payload, _stripe_header(payload))

        assert event.type == "payment_intent.succeeded"
        assert event.order_id == "pi_123"
        assert event.payment_id == "ch_1"
        assert event.currency == "INR"
        assert event.metadata["buyer_id"] == "buyer-1"

    def test_wrong_secret_is_rejected(self):
        payload = self._payload()
        with pytest.raises(InvalidSignatureError):
            _gateway().parse_webhook(payload, _stripe_header(payload, secret="whsec_other"))

    def test_missing_header_is_rejected(self):
        with pytest.raises(InvalidSignatureError):
            _gateway().parse_webhook(self._payload(), None)

    def test_unconfigured_secret_rejects_everything(self):
        payload = self._payload()
        gateway = StripeGateway(
            api_key="sk_test_123",
                client=SimpleNamespace(),
        )
        with pytest.raises(InvalidSignatureError):
            gateway.parse_webhook(payload, _stripe_header(payload))


class TestVerifyPayment:
    def _charges(self, **overrides) -> FakeResource:
        fields = dict(id="ch_1", payment_intent="pi_123", status="succeeded")
        fields.update(overrides)
        return FakeResource(SimpleNamespace(**fields))

    @pytest.mark.asyncio
    async def test_succeeded_charge_for_the_intent(self):
        charges = self._charges()
        gateway = _gateway(charges=charges)

        assert await gateway.verify_payment("pi_123", "ch_1") is True
        (args, _), = charges.calls
        assert args == ("ch_1",)

    @pytest.mark.asyncio
    async def test_client_signature_is_not_needed(self):
        gateway = _gateway(charges=self._charges())
        assert await gateway.verify_payment("pi_123", "ch_1", None) is True

    @pytest.mark.asyncio
    async def test_charge_for_another_intent(self):
        gateway = _gateway(charges=self._charges(payment_intent="pi_other"))
        assert await gateway.verify_payment("pi_123", "ch_1") is False

    @pytest.mark.asyncio
    async def test_expanded_intent(self):
        gateway = _gateway(charges=self._charges(payment_intent=SimpleNamespace(id="pi_123")))
        assert await gateway.verify_payment("pi_123", "ch_1") is True

    @pytest.mark.asyncio
    async def test_uncaptured_charge(self):
        gateway = _gateway(charges=self._charges(status="pending"))
        assert await gateway.verify_payment("pi_123", "ch_1") is False

    @pytest.mark.asyncio
    async def test_unknown_charge(self):
        error = stripe.InvalidRequestError("No such charge", "id", code="resource_missing")
        gateway = _gateway(charges=FakeResource(error=error))
        assert await gateway.verify_payment("pi_123", "ch_forged") is False

    @pytest.mark.asyncio
    async def test_timeout_propagates(self):
        gateway = _gateway(charges=FakeResource(SimpleNamespace(), delay=1.0))
        with pytest.raises(GatewayTimeoutError):
            await gateway.verify_payment("pi_123", "ch_1")
