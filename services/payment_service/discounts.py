"""
Discount rules applied when a payment intent is created.

The payable amount is reduced on the server, inside create-payment-intent, so
the amount Stripe collects is always derived from the stored discount row and
never from a number the browser computed.

    percentage    amount * value / 100, rounded half up to the cent
    fixed_amount  value dollars converted to cents

A discount never takes more than the order amount, and a discounted amount
that is not positive is rejected (Stripe cannot collect zero).
"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from services.payment_service.repository import PaymentRepository
from shared.models import DiscountCode
from shared.pricing import to_minor_units

logger = logging.getLogger(__name__)


class InvalidDiscountError(ValueError):
    """The code cannot be redeemed; the message is shown to the buyer."""


def as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo; stored timestamps are UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def find_redeemable(repo: PaymentRepository, code: str, now: Optional[datetime] = None) -> DiscountCode:
    """Return the discount for `code` or raise InvalidDiscountError."""
    if not code or not code.strip():
        raise InvalidDiscountError("Please enter a discount code")

    discount = repo.get_discount_by_code(code)
    if discount is None or not discount.is_active:
        raise InvalidDiscountError("Invalid discount code")

    now = now or datetime.now(timezone.utc)
    if discount.expires_at is not None and as_utc(discount.expires_at) <= now:
        raise InvalidDiscountError("Discount code has expired")

    if discount.max_redemptions is not None and discount.redemptions_count >= discount.max_redemptions:
        raise InvalidDiscountError("Discount code has reached its redemption limit")

    return discount


def discount_amount(discount: DiscountCode, amount: int) -> int:
    """Amount in cents taken off `amount` (cents) by `discount`."""
    value = Decimal(str(discount.discount_value))
    if discount.discount_type == "percentage":
        off = (Decimal(amount) * value / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        off = int(off)
    elif discount.discount_type == "fixed_amount":
        off = to_minor_units(value)
    else:
        raise InvalidDiscountError(f"Unsupported discount type {discount.discount_type}")
    return max(0, min(off, amount))


def apply_discount(discount: DiscountCode, amount: int) -> int:
    """Discounted amount in cents; must stay positive."""
    discounted = amount - discount_amount(discount, amount)
    if discounted <= 0:
        raise InvalidDiscountError("Discount exceeds order total")
    logger.info(f"Applied discount {discount.code}: {amount} -> {discounted}")
    return discounted
