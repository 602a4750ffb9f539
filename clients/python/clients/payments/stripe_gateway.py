"""Stripe-backed payment gateway.

An external order is a PaymentIntent; an external payment is the Charge that
captured it. Payment proofs are confirmed by reading the Charge back from
Stripe rather than by a client-side signature. The client is created per
gateway instance (no ``stripe.api_key`` global) and every call runs under an
explicit timeout.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional

import stripe

from .exceptions import (
    GatewayRejectedError,
    GatewayTimeoutError,
    InvalidSignatureError,
)
from .interface import (
    ExternalOrder,
    ExternalPayment,
    ExternalRefund,
    PaymentGateway,
    WebhookEvent,
)

logger = logging.getLogger(__name__)


class StripeGateway(PaymentGateway):
    def __init__(
        self,
        api_key: str,
        webhook_secret: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client: Optional[stripe.StripeClient] = None,
    ) -> None:
        super().__init__()
        self._webhook_secret = webhook_secret
        self._timeout = timeout_seconds
        self._client = client or stripe.StripeClient(
            api_key,
            http_client=stripe.HTTPXClient(timeout=timeout_seconds),
            max_network_retries=0,
        )

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise GatewayTimeoutError(f"Stripe {operation} timed out after {self._timeout}s") from e
        except stripe.APIConnectionError as e:
            raise GatewayTimeoutError(f"Stripe {operation} connection failed: {e.user_message or e}") from e
        except stripe.StripeError as e:
            logger.warning(f"Stripe {operation} rejected: {e.user_message or e}")
            raise GatewayRejectedError(f"Stripe {operation} rejected: {e.user_message or e}", code=e.code) from e

    @staticmethod
    def _order(intent: Any, receipt: Optional[str] = None) -> ExternalOrder:
        metadata = {k: str(v) for k, v in dict(intent.metadata or {}).items()}
        return ExternalOrder(
            id=intent.id,
            amount_minor_units=intent.amount,
            currency=intent.currency.upper(),
            receipt=receipt or metadata.get("receipt", ""),
            metadata=metadata,
            status=intent.status,
        )

    async def create_external_order(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: Dict[str, str],
        receipt: str,
    ) -> ExternalOrder:
        intent = await self._call(
            "create_external_order",
            self._client.payment_intents.create_async(
                params={
                    "amount": amount_minor_units,
                    "currency": currency.lower(),
                    "metadata": {**metadata, "receipt": receipt},
                },
                options={"idempotency_key": receipt},
            ),
        )
        return self._order(intent, receipt)

    async def get_external_order(self, order_id: str) -> ExternalOrder:
        intent = await self._call(
            "get_external_order",
            self._client.payment_intents.retrieve_async(order_id),
        )
        return self._order(intent)

    async def refund(
        self,
        payment_id: str,
        amount_minor_units: int,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> ExternalRefund:
        refund = await self._call(
            "refund",
            self._client.refunds.create_async(
                params={
                    "charge": payment_id,
                    "amount": amount_minor_units,
                    "metadata": metadata,
                },
                options={"idempotency_key": idempotency_key},
            ),
        )
        return ExternalRefund(
            id=refund.id,
            payment_id=payment_id,
            amount_minor_units=refund.amount,
            status=refund.status,
        )

    async def fetch_payments_for_order(self, order_id: str) -> List[ExternalPayment]:
        charges = await self._call(
            "fetch_payments_for_order",
            self._client.charges.list_async(params={"payment_intent": order_id}),
        )
        return [
            ExternalPayment(
                id=charge.id,
                order_id=order_id,
                amount_minor_units=charge.amount,
                currency=charge.currency.upper(),
                status=charge.status,
                refunded=bool(charge.refunded),
            )
            for charge in charges.data
        ]

    async def verify_payment(self, order_id: str, payment_id: str, signature: Optional[str] = None) -> bool:
        try:
            charge = await self._call("verify_payment", self._client.charges.retrieve_async(payment_id))
        except GatewayRejectedError:
            return False
        intent = charge.payment_intent
        intent_id = getattr(intent, "id", intent)
        if charge.status != "succeeded" or intent_id != order_id:
            logger.warning(
                f"Charge {payment_id} is {charge.status} for intent {intent_id}, not a capture of {order_id}"
            )
            return False
        return True

    def parse_webhook(self, payload: bytes, signature_header: Optional[str]) -> WebhookEvent:
        if not self._webhook_secret:
            raise InvalidSignatureError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature_header:
            raise InvalidSignatureError("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature_header, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignatureError("Invalid Stripe webhook signature") from e
        except ValueError as e:
            raise InvalidSignatureError(f"Malformed Stripe webhook payload: {e}") from e

        obj = event.data.object
        metadata = {k: str(v) for k, v in dict(obj.get("metadata") or {}).items()}
        currency = obj.get("currency")
        return WebhookEvent(
            type=event.type,
            order_id=obj.get("id"),
            payment_id=obj.get("latest_charge"),
            amount_minor_units=obj.get("amount"),
            currency=currency.upper() if currency else None,
            metadata=metadata,
        )
