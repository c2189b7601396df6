"""
Decimal helpers for monetary values.

All amounts are kept as Decimal. Stored columns hold two decimal places;
rate x quantity results are rounded to one decimal place.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

CENT = Decimal("0.01")
TENTH = Decimal("0.1")
ZERO = Decimal("0.00")

Number = Union[int, float, str, Decimal]


def to_decimal(value: Number) -> Decimal:
    """
    Convert a numeric value to Decimal without binary float artefacts.

    Floats go through str() so 0.1 becomes Decimal("0.1").
    Raises ValueError for anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"Invalid amount: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return result


def to_money(value: Optional[Number]) -> Decimal:
    """Quantize to cents, None counts as zero."""
    if value is None:
        return ZERO
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_to_tenth(value: Number) -> Decimal:
    """Round half-up to one decimal place, returned with two decimal places."""
    return to_decimal(value).quantize(TENTH, rounding=ROUND_HALF_UP).quantize(CENT)


def money_or_none(value: Optional[Number]) -> Optional[Decimal]:
    if value is None:
        return None
    return to_money(value)


def as_float(value: Optional[Decimal]) -> Optional[float]:
    """JSON friendly float for a stored amount."""
    if value is None:
        return None
    return float(to_money(value))
