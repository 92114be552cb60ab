"""Amount due per client per billing period.

    base  = price_per_device × max(device_count, 1)   (per_device)
          = price_monthly                            (otherwise)
    due   = base − base × pct / 100                  (PercentDiscount)
          = max(0, base − value)                     (FixedDiscount)
          = base                                     (no discount)

A client with no service package owes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from app.collection.money import ZERO, to_money

PER_DEVICE = "per_device"
FLAT = "flat"


@dataclass(frozen=True)
class PercentDiscount:
    value: Decimal

    def __post_init__(self):
        value = Decimal(str(self.value))
        if value < 0 or value > 100:
            raise ValueError(f"Percent discount must be within 0..100, got {value}")
        object.__setattr__(self, "value", value)


@dataclass(frozen=True)
class FixedDiscount:
    value: Decimal

    def __post_init__(self):
        value = to_money(self.value)
        if value < 0:
            raise ValueError(f"Fixed discount must not be negative, got {value}")
        object.__setattr__(self, "value", value)


Discount = Union[PercentDiscount, FixedDiscount]


def discount_from_fields(discount_type: str | None, discount_value) -> Discount | None:
    """Build the discount variant from the stored (type, value) pair.

    Both parts must be present and the value non-zero, otherwise the
    client has no discount.
    """
    if not discount_type or discount_value is None:
        return None
    if Decimal(str(discount_value)) == 0:
        return None
    if discount_type == "percent":
        return PercentDiscount(discount_value)
    if discount_type == "fixed":
        return FixedDiscount(discount_value)
    raise ValueError(f"Unknown discount type: {discount_type!r}")


def base_price(package, device_count: int | None) -> Decimal:
    if package.pricing_model == PER_DEVICE:
        devices = max(device_count or 1, 1)
        return to_money(to_money(package.price_per_device) * devices)
    return to_money(package.price_monthly)


def apply_discount(base: Decimal, discount: Discount | None) -> Decimal:
    if discount is None:
        return base
    if isinstance(discount, PercentDiscount):
        return to_money(base - base * discount.value / 100)
    if isinstance(discount, FixedDiscount):
        return max(ZERO, to_money(base - discount.value))
    raise TypeError(f"Unsupported discount variant: {type(discount).__name__}")


def compute_due(client, package) -> Decimal:
    """Amount the client owes for one period under `package`.

    `client` needs service_package_id, device_count and discount;
    `package` is the client's ServicePackage or None when it could not
    be found.
    """
    if not client.service_package_id or package is None:
        return ZERO
    return apply_discount(base_price(package, client.device_count), client.discount)
