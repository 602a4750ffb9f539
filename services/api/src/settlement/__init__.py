from .certificates import CertificateIssuer
from .engine import (
    OrderHandle,
    PaymentStatusView,
    RefundResult,
    SettlementEngine,
    SettlementOptions,
    SettlementResult,
    SettlementState,
)
from .errors import (
    CertificateIssueError,
    ConflictError,
    InsufficientInventoryError,
    NotFoundError,
    PersistenceError,
    SettlementError,
    ValidationError,
)

__all__ = [
    "CertificateIssuer",
    "OrderHandle",
    "PaymentStatusView",
    "RefundResult",
    "SettlementEngine",
    "SettlementOptions",
    "SettlementResult",
    "SettlementState",
    "CertificateIssueError",
    "ConflictError",
    "InsufficientInventoryError",
    "NotFoundError",
    "PersistenceError",
    "SettlementError",
    "ValidationError",
]
