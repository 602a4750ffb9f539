from typing import Optional


class PaymentGatewayError(Exception):
    """Base exception for payment gateway adapters."""

    retryable: bool = False


class GatewayTimeoutError(PaymentGatewayError):
    """The gateway did not answer in time or the connection failed.

    Safe to retry for order creation, which is keyed by its receipt tag.
    """

    retryable = True


class GatewayRejectedError(PaymentGatewayError):
    """The gateway answered and refused the request."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.code = code
        super().__init__(message)


class InvalidSignatureError(PaymentGatewayError):
    """A payment proof or webhook signature did not verify."""
    pass
