"""
Money helpers.

Every monetary value is stored in MongoDB as a 2-place Decimal128. Arithmetic
happens on `decimal.Decimal` and floats only appear in API responses.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any

from bson.decimal128 import Decimal128

from errors import InvalidAmount

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# significant digits a Decimal128 can hold
MAX_DIGITS = 34


def quantize(value: Any) -> Decimal:
    """Parse a number-like value and round it to 2 decimal places."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(value)
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    try:
        # str() keeps floats like 19.99 from dragging their binary expansion along
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(value)
    if not amount.is_finite():
        raise InvalidAmount(value)
    with localcontext() as ctx:
        ctx.prec = MAX_DIGITS
        try:
            return amount.quantize(CENT, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise InvalidAmount(value)


def to_decimal(value: Any) -> Decimal128:
    return Decimal128(quantize(value))


def from_decimal(value: Any) -> float:
    """Display form of a stored amount; an unset amount reads as 0."""
    if value is None:
        return 0
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    return float(value)


def as_amount(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return quantize(value)


def to_minor_units(value: Any) -> int:
    return int((as_amount(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))
