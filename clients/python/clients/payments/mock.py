"""In-process payment gateway used when Stripe is not configured.

Behaves like the real gateway from the settlement engine's point of view:
orders are idempotent per receipt, refunds are idempotent per key, webhooks
are authenticated with an HMAC header. ``capture`` stands in for the buyer
completing checkout in the browser.
"""

import hashlib
import hmac
import json
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from .exceptions import (
    GatewayRejectedError,
    InvalidSignatureError,
    PaymentGatewayError,
)
from .interface import (
    ExternalOrder,
    ExternalPayment,
    ExternalRefund,
    PaymentGateway,
    WebhookEvent,
    compute_signature,
)


def _digest(*parts: str) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]


class MockGateway(PaymentGateway):
    def __init__(self, signing_secret: str, webhook_secret: Optional[str] = None) -> None:
        if not signing_secret:
            raise ValueError("A payment signing secret is required")
        super().__init__(signing_secret)
        self._webhook_secret = webhook_secret or signing_secret
        self._orders: Dict[str, ExternalOrder] = {}
        self._order_by_receipt: Dict[str, str] = {}
        self._payments: Dict[str, ExternalPayment] = {}
        self._refunds: Dict[str, ExternalRefund] = {}
        self._failures: Dict[str, List[PaymentGatewayError]] = defaultdict(list)
        self.calls: List[str] = []

    # ------------------------------------------------------------------
    # Test / dev controls
    # ------------------------------------------------------------------

    def fail_next(self, operation: str, error: PaymentGatewayError) -> None:
        """Queue ``error`` to be raised by the next call to ``operation``."""
        self._failures[operation].append(error)

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    def sign(self, order_id: str, payment_id: str) -> str:
        return compute_signature(self._signing_secret, order_id, payment_id)

    def capture(self, order_id: str) -> Tuple[str, str]:
        """Simulate a successful checkout. Returns ``(payment_id, signature)``."""
        order = self._orders.get(order_id)
        if order is None:
            raise GatewayRejectedError(f"No such order: {order_id}", code="resource_missing")
        attempt = sum(1 for p in self._payments.values() if p.order_id == order_id)
        payment_id = f"pay_mock_{_digest(order_id, str(attempt))}"
        self._payments[payment_id] = ExternalPayment(
            id=payment_id,
            order_id=order_id,
            amount_minor_units=order.amount_minor_units,
            currency=order.currency,
            status="captured",
        )
        order.status = "paid"
        return payment_id, self.sign(order_id, payment_id)

    def build_webhook(self, order_id: str, payment_id: str) -> Tuple[bytes, str]:
        """Build a signed ``payment_intent.succeeded`` delivery for an order."""
        order = self._orders[order_id]
        body = {
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": order_id,
                    "latest_charge": payment_id,
                    "amount": order.amount_minor_units,
                    "currency": order.currency.lower(),
                    "metadata": order.metadata,
                }
            },
        }
        payload = json.dumps(body).encode("utf-8")
        header = hmac.new(self._webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
        return payload, header

    # ------------------------------------------------------------------
    # PaymentGateway
    # ------------------------------------------------------------------

    async def create_external_order(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: Dict[str, str],
        receipt: str,
    ) -> ExternalOrder:
        self._enter("create_external_order")
        if amount_minor_units <= 0:
            raise GatewayRejectedError("Amount must be positive", code="amount_too_small")
        existing = self._order_by_receipt.get(receipt)
        if existing:
            return self._orders[existing]
        order = ExternalOrder(
            id=f"order_mock_{_digest(receipt)}",
            amount_minor_units=amount_minor_units,
            currency=currency,
            receipt=receipt,
            metadata=dict(metadata),
        )
        self._orders[order.id] = order
        self._order_by_receipt[receipt] = order.id
        return order

    async def get_external_order(self, order_id: str) -> ExternalOrder:
        self._enter("get_external_order")
        order = self._orders.get(order_id)
        if order is None:
            raise GatewayRejectedError(f"No such order: {order_id}", code="resource_missing")
        return order

    async def refund(
        self,
        payment_id: str,
        amount_minor_units: int,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> ExternalRefund:
        self._enter("refund")
        if idempotency_key in self._refunds:
            return self._refunds[idempotency_key]
        payment = self._payments.get(payment_id)
        if payment is None:
            raise GatewayRejectedError(f"No such payment: {payment_id}", code="resource_missing")
        if payment.refunded:
            raise GatewayRejectedError(f"Payment {payment_id} already refunded", code="charge_already_refunded")
        if amount_minor_units > payment.amount_minor_units:
            raise GatewayRejectedError("Refund exceeds captured amount", code="amount_too_large")
        payment.refunded = True
        payment.status = "refunded"
        refund = ExternalRefund(
            id=f"rfnd_mock_{_digest(idempotency_key)}",
            payment_id=payment_id,
            amount_minor_units=amount_minor_units,
            status="succeeded",
        )
        self._refunds[idempotency_key] = refund
        return refund

    async def fetch_payments_for_order(self, order_id: str) -> List[ExternalPayment]:
        self._enter("fetch_payments_for_order")
        return [p for p in self._payments.values() if p.order_id == order_id]

    def parse_webhook(self, payload: bytes, signature_header: Optional[str]) -> WebhookEvent:
        if not signature_header:
            raise InvalidSignatureError("Missing webhook signature")
        expected = hmac.new(self._webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected.encode("utf-8"), signature_header.encode("utf-8")):
            raise InvalidSignatureError("Webhook signature mismatch")
        try:
            body = json.loads(payload)
        except ValueError as e:
            raise InvalidSignatureError(f"Malformed webhook payload: {e}") from e
        obj = body.get("data", {}).get("object", {})
        return WebhookEvent(
            type=body.get("type", ""),
            order_id=obj.get("id"),
            payment_id=obj.get("latest_charge"),
            amount_minor_units=obj.get("amount"),
            currency=(obj.get("currency") or "").upper() or None,
            metadata={k: str(v) for k, v in (obj.get("metadata") or {}).items()},
        )
