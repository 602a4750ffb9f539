"""Exact money arithmetic.

Prices are ``Decimal``; the gateway sees integer minor units. The one
conversion point is :func:`to_minor_units`, which rounds half up.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

# ISO 4217 minor-unit exponents that differ from the default of 2
MINOR_UNIT_EXPONENTS = {
    "JPY": 0,
    "KRW": 0,
    "VND": 0,
    "BHD": 3,
    "KWD": 3,
    "OMR": 3,
}
DEFAULT_EXPONENT = 2


def minor_unit_exponent(currency: str) -> int:
    return MINOR_UNIT_EXPONENTS.get(currency.upper(), DEFAULT_EXPONENT)


def as_decimal(value: Union[Decimal, int, str]) -> Decimal:
    if isinstance(value, float):
        raise TypeError("Money must not be given as float")
    return value if isinstance(value, Decimal) else Decimal(value)


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return as_decimal(unit_price) * quantity


def to_minor_units(amount: Decimal, currency: str) -> int:
    scale = Decimal(10) ** minor_unit_exponent(currency)
    return int((as_decimal(amount) * scale).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor_units: int, currency: str) -> Decimal:
    return Decimal(amount_minor_units).scaleb(-minor_unit_exponent(currency))
