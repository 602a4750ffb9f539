from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class ListingData(BaseCouchbaseEntityData):
    producer_id: str
    application_id: Optional[str] = None
    title: str = ""
    description: Optional[str] = None
    # Older documents and producer forms send price_per_kg / pricePerKg
    price: Decimal = Field(
        gt=0, validation_alias=AliasChoices("price", "price_per_kg", "pricePerKg")
    )
    currency: str = "INR"
    unit: str = "kg"
    total_quantity: int = Field(ge=0)
    available_quantity: int = Field(ge=0)
    energy_source: Optional[str] = None
    carbon_intensity: Optional[float] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _check_quantities(self) -> "ListingData":
        if self.available_quantity > self.total_quantity:
            raise ValueError(
                f"available_quantity {self.available_quantity} exceeds "
                f"total_quantity {self.total_quantity}"
            )
        return self

    @property
    def is_active(self) -> bool:
        return self.available_quantity > 0


class Listing(BaseModelCouchbase[ListingData]):
    _collection_name = "listings"
