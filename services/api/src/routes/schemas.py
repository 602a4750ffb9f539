"""Wire shapes shared by several routers.

JSON is camelCase on the way out; requests may use camelCase or snake_case.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from models.entities.couchbase.listings import Listing
from models.entities.couchbase.transactions import Transaction


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransactionView(ApiModel):
    id: str
    transaction_id: str
    buyer_id: str
    producer_id: Optional[str] = None
    listing_id: str
    quantity: int
    unit: str
    price_per_unit: Decimal
    total_amount: Decimal
    amount_minor_units: int
    currency: str
    payment_status: str
    status: str
    settled_via: str
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
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, transaction: Transaction) -> "TransactionView":
        return cls(id=transaction.id, **transaction.data.model_dump())


class ListingView(ApiModel):
    id: str
    producer_id: str
    title: str
    price: Decimal
    currency: str
    unit: str
    total_quantity: int
    available_quantity: int
    is_active: bool
    energy_source: Optional[str] = None
    carbon_intensity: Optional[float] = None

    @classmethod
    def from_entity(cls, listing: Listing) -> "ListingView":
        data = listing.data
        return cls(
            id=listing.id,
            producer_id=data.producer_id,
            title=data.title,
            price=data.price,
            currency=data.currency,
            unit=data.unit,
            total_quantity=data.total_quantity,
            available_quantity=data.available_quantity,
            is_active=data.is_active,
            energy_source=data.energy_source,
            carbon_intensity=data.carbon_intensity,
        )
