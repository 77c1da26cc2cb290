# storefront/domain/money.py
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

ZERO = Decimal("0.00")
_CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Fixed point, two fractional digits. Floats go through str() first."""
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def line_total(price, quantity: int) -> Decimal:
    return to_money(to_money(price) * quantity)


def sum_money(values: Iterable) -> Decimal:
    # components are rounded first, the sum never is re-derived from raw values
    return sum((to_money(v) for v in values), ZERO)


def effective_price(price, sale_price=None) -> Decimal:
    if sale_price is not None and to_money(sale_price) > ZERO:
        return to_money(sale_price)
    return to_money(price)


def shipping_cost(subtotal, threshold, fee) -> Decimal:
    if to_money(subtotal) >= to_money(threshold):
        return ZERO
    return to_money(fee)
