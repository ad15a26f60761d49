"""Currency rounding helpers"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

MINOR_UNIT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Round to two decimal places using round-half-up"""
    if not isinstance(value, Decimal):
        # str() keeps floats like 2.675 from picking up binary noise
        value = Decimal(str(value))
    return value.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Decimal]) -> Decimal:
    return to_money(sum(values, ZERO))
