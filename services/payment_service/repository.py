import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from shared.models import DiscountCode, Product, UserProfile

logger = logging.getLogger(__name__)


class PaymentRepository:
    """Repository for the rows the payment glue reads and annotates."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    # Profiles

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.db.get(UserProfile, user_id)

    def set_stripe_customer(self, profile: UserProfile, customer_id: str) -> None:
        profile.stripe_customer_id = customer_id
        self.db.commit()
        logger.info(f"Stored Stripe customer {customer_id} on profile {profile.id}")

    # Discounts

    def get_discount(self, discount_id: str, lock: bool = False) -> Optional[DiscountCode]:
        """Get a discount by id, optionally row-locked until the next commit."""
        query = self.db.query(DiscountCode).filter(DiscountCode.id == discount_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def get_discount_by_code(self, code: str) -> Optional[DiscountCode]:
        """Look up a discount by code, case-insensitively."""
        return (
            self.db.query(DiscountCode)
            .filter(func.upper(DiscountCode.code) == code.strip().upper())
            .first()
        )

    def record_redemption(self, code: str) -> bool:
        """
        Count one redemption of `code` in a single UPDATE. Returns False when
        the code is unknown or already at its redemption limit.
        """
        updated = (
            self.db.query(DiscountCode)
            .filter(
                func.upper(DiscountCode.code) == code.strip().upper(),
                or_(
                    DiscountCode.max_redemptions.is_(None),
                    DiscountCode.redemptions_count < DiscountCode.max_redemptions,
                ),
            )
            .update(
                {DiscountCode.redemptions_count: DiscountCode.redemptions_count + 1},
                synchronize_session=False,
            )
        )
        self.db.commit()
        if updated:
            logger.info(f"Recorded redemption of discount {code}")
        return bool(updated)

    def set_coupon_id(self, discount: DiscountCode, coupon_id: str) -> None:
        discount.stripe_coupon_id = coupon_id
        self.db.commit()
        logger.info(f"Stored Stripe coupon {coupon_id} on discount {discount.code}")

    # Products

    def get_product(self, product_id: str) -> Optional[Product]:
        return self.db.get(Product, product_id)

    def mark_product_syncing(self, product: Product) -> None:
        product.stripe_sync_status = "syncing"
        product.stripe_sync_error = None
        self.db.commit()

    def mark_product_synced(self, product: Product, stripe_product_id: str, stripe_price_id: str) -> None:
        product.stripe_product_id = stripe_product_id
        product.stripe_price_id = stripe_price_id
        product.stripe_sync_status = "synced"
        product.stripe_sync_error = None
        product.stripe_last_synced_at = datetime.now(timezone.utc)
        self.db.commit()
        logger.info(f"Product {product.id} synced to Stripe as {stripe_product_id}/{stripe_price_id}")

    def mark_product_sync_failed(self, product: Product, error: str) -> None:
        self.db.rollback()
        product.stripe_sync_status = "error"
        product.stripe_sync_error = error
        self.db.commit()
        logger.warning(f"Product {product.id} sync failed: {error}")
