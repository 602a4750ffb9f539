from .exceptions import (
    PaymentGatewayError,
    GatewayTimeoutError,
    GatewayRejectedError,
    InvalidSignatureError,
)
from .interface import (
    PaymentGateway,
    ExternalOrder,
    ExternalPayment,
    ExternalRefund,
    WebhookEvent,
    compute_signature,
)
from .mock import MockGateway

__all__ = [
    "PaymentGateway",
    "ExternalOrder",
    "ExternalPayment",
    "ExternalRefund",
    "WebhookEvent",
    "compute_signature",
    "MockGateway",
    "PaymentGatewayError",
    "GatewayTimeoutError",
    "GatewayRejectedError",
    "InvalidSignatureError",
]
