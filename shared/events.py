"""
events.py - Kafka Event Schema Definitions

PURPOSE:
    Event schemas published by the storefront services. Pydantic handles
    validation and JSON serialization.

EVENT CATEGORIES:
    1. Cart Events
       - cart.item_added
       - cart.item_removed
       - cart.merged

    2. Payment Events
       - payment.intent_created
       - payment.succeeded (hand-off to order finalization)

    3. Catalog / Discount Sync Events
       - catalog.product_synced
       - discount.synced

COMMON FIELDS (BaseEvent):
    - event_id: Unique identifier (UUID)
    - event_type: Event category and action
    - timestamp: UTC timestamp of event creation
    - correlation_id: Links events produced by one request

USAGE:
    event = CartMergedEvent(
        correlation_id=str(uuid4()),
        session_id="session_1760778723_k3j2h1g0f",
        user_id="5b1e9c1e-...",
        moved=2,
        combined=1,
    )
    producer.publish(event.event_type, event)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class BaseEvent(BaseModel):
    """
    Base event model for all Kafka events.

    All events inherit from this class and include:
    - Unique event ID
    - Event type identifier
    - UTC timestamp
    - Correlation ID
    """

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str = Field(default_factory=lambda: str(uuid4()))


# ============================================================================
# CART EVENTS
# ============================================================================

class CartItemAddedEvent(BaseEvent):
    """Published when a product is added to a cart (new row or quantity increment)."""

    event_type: str = "cart.item_added"
    owner: str  # "user:<id>" or "guest:<session id>"
    product_id: str
    quantity: int  # Units added by this call


class CartItemRemovedEvent(BaseEvent):
    """Published when a cart row is deleted (explicitly or by quantity <= 0)."""

    event_type: str = "cart.item_removed"
    owner: str
    item_id: str


class CartMergedEvent(BaseEvent):
    """Published after a guest cart was merged into a user's cart on sign-in."""

    event_type: str = "cart.merged"
    session_id: str
    user_id: str
    moved: int  # Rows reassigned to the user
    combined: int  # Rows folded into an existing user row


# ============================================================================
# PAYMENT EVENTS
# ============================================================================

class PaymentIntentCreatedEvent(BaseEvent):
    """Published when a payment intent was created for a checkout."""

    event_type: str = "payment.intent_created"
    payment_intent_id: str
    user_id: str  # user id or "guest"
    amount: int  # Minor units
    currency: str = "usd"
    discount_code: Optional[str] = None


class PaymentSucceededEvent(BaseEvent):
    """
    Published when a payment confirmation returned `succeeded`.
    Consumers: order finalization (creates orders/order_items, clears the cart)
    """

    event_type: str = "payment.succeeded"
    payment_intent_id: str
    user_id: str
    amount: int
    currency: str = "usd"
    receipt_email: Optional[str] = None
    items: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# SYNC EVENTS
# ============================================================================

class ProductSyncedEvent(BaseEvent):
    """Published after a product was mirrored to Stripe."""

    event_type: str = "catalog.product_synced"
    product_id: str
    stripe_product_id: str
    stripe_price_id: str


class DiscountSyncedEvent(BaseEvent):
    """Published after a discount code was mirrored to a Stripe coupon."""

    event_type: str = "discount.synced"
    discount_id: str
    code: str
    stripe_coupon_id: str


# Event mapping for deserialization
EVENT_TYPE_MAP = {
    "cart.item_added": CartItemAddedEvent,
    "cart.item_removed": CartItemRemovedEvent,
    "cart.merged": CartMergedEvent,
    "payment.intent_created": PaymentIntentCreatedEvent,
    "payment.succeeded": PaymentSucceededEvent,
    "catalog.product_synced": ProductSyncedEvent,
    "discount.synced": DiscountSyncedEvent,
}

ALL_TOPICS = list(EVENT_TYPE_MAP.keys())
