"""Money helpers shared by the cart and checkout code."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

CENT = Decimal("0.01")


def to_minor_units(amount) -> int:
    """Convert a decimal currency amount to integer cents (round half up)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def total_items(lines: Iterable) -> int:
    """Sum of quantities across cart lines."""
    return sum(line.quantity for line in lines)


def total_price(lines: Iterable) -> Decimal:
    """Sum of price * quantity over lines whose product is present."""
    total = Decimal("0.00")
    for line in lines:
        # a line whose product was deleted or hidden contributes nothing
        if line.product is None:
            continue
        total += Decimal(str(line.product.price)) * line.quantity
    return total.quantize(CENT)
