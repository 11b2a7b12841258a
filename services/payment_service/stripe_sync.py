"""
stripe_sync.py - Admin-triggered mirroring of local rows into Stripe

PRODUCT SYNC:
    1. Mark the product `syncing`
    2. Create the Stripe product, or update the one already linked
    3. Prices are immutable in Stripe:
       - subscription: deactivate the old price, create a recurring one
       - one-off: reuse the linked price while its unit amount still matches,
         otherwise deactivate it and create a new one
    4. Store ids, mark `synced`; on any failure mark `error` with the message

DISCOUNT SYNC:
    A discount that already has a stripe_coupon_id is refused, so re-clicking
    "sync" can never create a second coupon. Nothing is retried; the admin
    re-triggers after fixing the cause.

PRODUCT ARCHIVE:
    Stripe products with prices cannot be deleted, so "delete" deactivates the
    price and archives the product.
"""

import logging
from typing import Optional, Tuple

from services.payment_service.discounts import as_utc
from services.payment_service.repository import PaymentRepository
from services.payment_service.stripe_gateway import StripeGateway
from shared.models import DiscountCode, Product
from shared.pricing import to_minor_units

logger = logging.getLogger(__name__)


class RecordNotFoundError(LookupError):
    """The product or discount to sync does not exist."""


class DiscountAlreadySyncedError(Exception):
    """The discount already has a Stripe coupon."""


class StripeSyncService:
    """Mirrors products and discount codes into Stripe."""

    def __init__(self, repo: PaymentRepository, gateway: StripeGateway):
        self.repo = repo
        self.gateway = gateway

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def sync_product(self, product_id: str) -> Tuple[str, str]:
        """Create or update the Stripe product and price. Returns (product id, price id)."""
        product = self.repo.get_product(product_id)
        if product is None:
            raise RecordNotFoundError("Product not found")

        self.repo.mark_product_syncing(product)
        try:
            stripe_product = self._upsert_product(product)
            stripe_price = self._sync_price(product, stripe_product.id)
        except Exception as e:
            self.repo.mark_product_sync_failed(product, str(e) or "Unknown error")
            raise

        self.repo.mark_product_synced(product, stripe_product.id, stripe_price.id)
        return stripe_product.id, stripe_price.id

    def _upsert_product(self, product: Product):
        params = {
            "name": product.name,
            "active": True,
            "metadata": {
                "database_id": product.id,
                "is_subscription": "true" if product.is_subscription else "false",
            },
        }
        if product.description:
            params["description"] = product.description
        if product.image_url:
            params["images"] = [product.image_url]

        if product.stripe_product_id:
            return self.gateway.update_product(product.stripe_product_id, **params)
        return self.gateway.create_product(**params)

    def _sync_price(self, product: Product, stripe_product_id: str):
        unit_amount = to_minor_units(product.price)
        metadata = {"database_id": product.id}

        if product.is_subscription:
            if product.stripe_price_id:
                self.gateway.update_price(product.stripe_price_id, active=False)
            return self.gateway.create_price(
                product=stripe_product_id,
                unit_amount=unit_amount,
                currency=StripeGateway.CURRENCY,
                recurring={
                    "interval": product.subscription_interval or "month",
                    "interval_count": product.subscription_interval_count or 1,
                },
                metadata=metadata,
            )

        if product.stripe_price_id:
            existing = self.gateway.retrieve_price(product.stripe_price_id)
            if existing.unit_amount == unit_amount and not getattr(existing, "recurring", None):
                return self.gateway.update_price(product.stripe_price_id, active=True, metadata=metadata)
            logger.info(f"Price of product {product.id} changed, replacing {product.stripe_price_id}")
            self.gateway.update_price(product.stripe_price_id, active=False)

        return self.gateway.create_price(
            product=stripe_product_id,
            unit_amount=unit_amount,
            currency=StripeGateway.CURRENCY,
            metadata=metadata,
        )

    def archive_product(self, stripe_product_id: str, stripe_price_id: Optional[str] = None) -> None:
        """Deactivate the price (best effort) and archive the Stripe product."""
        if not stripe_product_id:
            raise ValueError("Stripe product ID is required")

        if stripe_price_id:
            try:
                self.gateway.update_price(stripe_price_id, active=False)
            except Exception as e:
                logger.error(f"Error deactivating price {stripe_price_id}: {e}")

        self.gateway.update_product(stripe_product_id, active=False)
        logger.info(f"Archived Stripe product {stripe_product_id}")

    # ------------------------------------------------------------------
    # Discounts
    # ------------------------------------------------------------------

    def sync_discount(self, discount_id: str) -> str:
        """Create the Stripe coupon for a discount. Returns the coupon id."""
        # held until set_coupon_id commits, so concurrent syncs see the coupon id
        discount = self.repo.get_discount(discount_id, lock=True)
        if discount is None:
            raise RecordNotFoundError("Discount code not found")

        if discount.stripe_coupon_id:
            raise DiscountAlreadySyncedError("Discount already synced to Stripe")

        coupon = self.gateway.create_coupon(**self._coupon_params(discount))
        self.repo.set_coupon_id(discount, coupon.id)
        return coupon.id

    @staticmethod
    def _coupon_params(discount: DiscountCode) -> dict:
        params = {
            "name": discount.code,
            "duration": discount.duration,
            "metadata": {"database_id": discount.id, "code": discount.code},
        }
        if discount.discount_type == "percentage":
            params["percent_off"] = float(discount.discount_value)
        else:
            params["amount_off"] = to_minor_units(discount.discount_value)
            params["currency"] = StripeGateway.CURRENCY

        if discount.duration == "repeating" and discount.duration_in_months:
            params["duration_in_months"] = discount.duration_in_months
        if discount.max_redemptions:
            params["max_redemptions"] = discount.max_redemptions
        if discount.expires_at:
            params["redeem_by"] = int(as_utc(discount.expires_at).timestamp())
        return params
