"""Payment gateway capability surface.

All amounts cross this boundary as integer minor units (paise, cents, ...).
Implementations are constructed once at process start and injected into the
settlement engine; nothing here holds module-level state.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ExternalOrder(BaseModel):
    id: str
    amount_minor_units: int
    currency: str
    receipt: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    status: str = "created"


class ExternalPayment(BaseModel):
    id: str
    order_id: str
    amount_minor_units: int
    currency: str
    status: str
    refunded: bool = False


class ExternalRefund(BaseModel):
    id: str
    payment_id: str
    amount_minor_units: int
    status: str


class WebhookEvent(BaseModel):
    type: str
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    amount_minor_units: Optional[int] = None
    currency: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 hex digest over ``order_id|payment_id``."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class PaymentGateway(ABC):
    """Abstract payment gateway.

    Subclasses must raise :class:`GatewayTimeoutError` for network failures
    and timeouts, and :class:`GatewayRejectedError` when the provider
    explicitly refuses a request.
    """

    def __init__(self, signing_secret: Optional[str] = None) -> None:
        self._signing_secret = signing_secret

    def verify_signature(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        if not self._signing_secret or not signature:
            return False
        expected = compute_signature(self._signing_secret, order_id, payment_id)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))

    async def verify_payment(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        """Whether ``payment_id`` is a captured payment for ``order_id``.

        Gateways whose checkout hands the buyer a signed proof check the
        HMAC here; others confirm the payment with the provider instead.
        """
        return self.verify_signature(order_id, payment_id, signature)

    @abstractmethod
    async def create_external_order(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: Dict[str, str],
        receipt: str,
    ) -> ExternalOrder:
        """Create an order on the gateway. Idempotent per ``receipt``."""

    @abstractmethod
    async def get_external_order(self, order_id: str) -> ExternalOrder:
        """Fetch an order previously created by :meth:`create_external_order`."""

    @abstractmethod
    async def refund(
        self,
        payment_id: str,
        amount_minor_units: int,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> ExternalRefund:
        """Reverse a captured payment. Callers must not retry automatically."""

    @abstractmethod
    async def fetch_payments_for_order(self, order_id: str) -> List[ExternalPayment]:
        """List every payment attempt the gateway holds for an order."""

    @abstractmethod
    def parse_webhook(self, payload: bytes, signature_header: Optional[str]) -> WebhookEvent:
        """Authenticate and decode a webhook delivery.

        Raises:
            InvalidSignatureError: the delivery could not be authenticated.
        """
