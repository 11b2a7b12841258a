"""
models.py - Storefront persistence tables

Tables shared by the cart and payment services. Ids are string UUIDs so rows
created by the hosted platform and rows created here look the same.

    products        catalog rows, mirrored to Stripe by the admin sync
    cart_items      one row per (owner, product); owner is a user XOR a guest session
    merged_sessions guest session ids already folded into a user's cart
    user_profiles   buyer profile, role and Stripe customer reference
    discount_codes  locally defined discounts, mirrored to Stripe coupons
"""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from shared.database import Base


def _uuid() -> str:
    return str(uuid4())


class Product(Base):
    """Catalog product (read-only for the cart)."""

    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    image_url = Column(String(1024), nullable=True)
    category_id = Column(String(36), nullable=True)
    is_featured = Column(Boolean, default=False, nullable=False)
    is_top_selling = Column(Boolean, default=False, nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)
    is_subscription = Column(Boolean, default=False, nullable=False)
    subscription_interval = Column(String(10), nullable=True)  # day, week, month, year
    subscription_interval_count = Column(Integer, nullable=True)
    stripe_product_id = Column(String(255), nullable=True)
    stripe_price_id = Column(String(255), nullable=True)
    stripe_sync_status = Column(String(20), default="pending", nullable=False)  # pending, syncing, synced, error
    stripe_sync_error = Column(Text, nullable=True)
    stripe_last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (CheckConstraint("price >= 0", name="ck_products_price_non_negative"),)


class CartItem(Base):
    """Cart line owned by a signed-in user or an anonymous session, never both."""

    __tablename__ = "cart_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=True, index=True)
    session_id = Column(String(255), nullable=True, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    product = relationship("Product", lazy="joined")

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)",
            name="ck_cart_items_single_owner",
        ),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),
        UniqueConstraint("session_id", "product_id", name="uq_cart_items_session_product"),
    )


class MergedSession(Base):
    """Guest session whose cart was merged; later guest adds go to the user."""

    __tablename__ = "merged_sessions"

    session_id = Column(String(255), primary_key=True)
    user_id = Column(String(36), nullable=False)
    merged_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UserProfile(Base):
    """Profile row for an authenticated user."""

    __tablename__ = "user_profiles"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), default="customer", nullable=False)  # customer, admin
    stripe_customer_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class DiscountCode(Base):
    """Discount code, optionally mirrored to a Stripe coupon."""

    __tablename__ = "discount_codes"

    id = Column(String(36), primary_key=True, default=_uuid)
    code = Column(String(64), unique=True, nullable=False, index=True)
    stripe_coupon_id = Column(String(255), nullable=True)
    discount_type = Column(String(20), nullable=False)  # percentage, fixed_amount
    discount_value = Column(Numeric(10, 2), nullable=False)
    duration = Column(String(20), default="once", nullable=False)  # once, repeating, forever
    duration_in_months = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    max_redemptions = Column(Integer, nullable=True)
    redemptions_count = Column(Integer, default=0, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
