"""Money helpers.

All currency amounts are Decimal quantized to 2 places with
ROUND_HALF_UP.  Values go through str() first so a driver that hands
back floats for aggregates cannot leak binary rounding into totals.
"""

from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce an int / str / Decimal to a 2-place Decimal."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def sum_money(values) -> Decimal:
    return sum((to_money(v) for v in values), ZERO)
