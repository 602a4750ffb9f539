from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field, model_validator
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData

PaymentStatus = Literal["pending", "completed", "failed", "refunded"]


class TransactionData(BaseCouchbaseEntityData):
    transaction_id: str
    settlement_key: str
    buyer_id: str
    producer_id: Optional[str] = None
    listing_id: str
    quantity: int = Field(gt=0)
    unit: str = "kg"
    price_per_unit: Decimal
    total_amount: Decimal
    amount_minor_units: int
    currency: str = "INR"
    payment_status: PaymentStatus = "pending"
    status: Literal["active", "completed", "cancelled"] = "active"
    settled_via: Literal["client", "webhook", "direct"] = "client"
    external_order_id: Optional[str] = None
    external_payment_id: Optional[str] = None
    certificate_number: Optional[str] = None
    certificate_path: Optional[str] = None
    reconciliation_required: bool = False
    failure_reason: Optional[str] = None
    refund_id: Optional[str] = None
    refund_reason: Optional[str] = None
    refunded_by: Optional[str] = None
    refunded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_amounts(self) -> "TransactionData":
        if self.total_amount != self.price_per_unit * self.quantity:
            raise ValueError(
                f"total_amount {self.total_amount} != "
                f"{self.quantity} x {self.price_per_unit}"
            )
        if self.certificate_number and self.payment_status not in ("completed", "refunded"):
            raise ValueError("certificate_number is only issued for completed transactions")
        return self


class Transaction(BaseModelCouchbase[TransactionData]):
    _collection_name = "transactions"
