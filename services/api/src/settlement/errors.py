"""Settlement error taxonomy.

Each class carries the HTTP status the API adapter answers with. Gateway
failures come from ``clients.payments`` and are re-exported here so callers
import the whole taxonomy from one place.
"""

from typing import Optional

from clients.payments.exceptions import (
    GatewayRejectedError,
    GatewayTimeoutError,
    InvalidSignatureError,
    PaymentGatewayError,
)


class SettlementError(Exception):
    status_code: int = 500
    code: str = "settlement_error"

    def __init__(self, message: str, transaction_id: Optional[str] = None) -> None:
        self.transaction_id = transaction_id
        super().__init__(message)


class ValidationError(SettlementError):
    """Bad input shape or range."""

    status_code = 400
    code = "validation_error"


class NotFoundError(SettlementError):
    status_code = 404
    code = "not_found"


class ConflictError(SettlementError):
    """Illegal state transition, or the listing sold out under us."""

    status_code = 409
    code = "conflict"


class InsufficientInventoryError(ConflictError):
    """Settlement found fewer units than requested.

    When a payment was already captured, ``reconciliation_required`` is True
    and ``transaction_id`` names the failed transaction recorded for it.
    """

    code = "insufficient_inventory"

    def __init__(
        self,
        listing_id: str,
        requested: int,
        available: Optional[int],
        transaction_id: Optional[str] = None,
        reconciliation_required: bool = False,
    ) -> None:
        self.listing_id = listing_id
        self.requested = requested
        self.available = available
        self.reconciliation_required = reconciliation_required
        available_text = "none" if available is None else str(available)
        super().__init__(
            f"Listing {listing_id}: requested {requested}, available {available_text}",
            transaction_id=transaction_id,
        )


class PersistenceError(SettlementError):
    """The store failed after money moved at the gateway. Needs an operator."""

    code = "persistence_error"

    def __init__(
        self,
        message: str,
        external_order_id: Optional[str] = None,
        external_payment_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> None:
        self.external_order_id = external_order_id
        self.external_payment_id = external_payment_id
        super().__init__(message, transaction_id=transaction_id)


class CertificateIssueError(PersistenceError):
    code = "certificate_issue_error"


__all__ = [
    "SettlementError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InsufficientInventoryError",
    "PersistenceError",
    "CertificateIssueError",
    "PaymentGatewayError",
    "GatewayTimeoutError",
    "GatewayRejectedError",
    "InvalidSignatureError",
]
