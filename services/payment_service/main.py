"""
payment_service/main.py - Payment Glue Service

PURPOSE:
    Server-side half of checkout. Creates and confirms Stripe payment intents
    for the storefront, applies discount codes to the amount Stripe collects,
    and lets admins mirror products and discount codes into Stripe.

CHECKOUT FLOW:
    1. Storefront posts the cart total (cents) and items to create-payment-intent
    2. Optional discount code is validated and applied here, never in the browser
    3. Stripe customer is created once per user profile and reused afterwards
    4. Storefront posts buyer details to confirm-payment
    5. A `succeeded` confirmation publishes payment.succeeded; the order
       finalization consumer turns it into orders/order_items

ADMIN ENDPOINTS:
    Bearer token resolved through the hosted auth service; the caller's
    profile must have role `admin`. Authorization is checked before any
    Stripe call.

API ENDPOINTS:
    POST /create-payment-intent       - Create a payment intent for a checkout
    POST /validate-discount           - Check a code and preview the discount
    POST /confirm-payment             - Confirm an intent with buyer details
    POST /sync-product-to-stripe      - (admin) Mirror a product and its price
    POST /sync-discount-to-stripe     - (admin) Mirror a discount as a coupon
    POST /delete-product-from-stripe  - (admin) Archive a Stripe product
    GET  /health                      - Health check

KAFKA EVENTS PUBLISHED:
    - payment.intent_created
    - payment.succeeded
    - catalog.product_synced
    - discount.synced

TESTING COMMANDS:
    1. Create an intent for a guest checkout of $33.48:
        curl -X POST http://localhost:8003/create-payment-intent \
          -H "Content-Type: application/json" \
          -d '{"amount": 3348, "items": [{"productId": "<product uuid>", "quantity": 2}]}'

    2. Preview a discount:
        curl -X POST http://localhost:8003/validate-discount \
          -H "Content-Type: application/json" \
          -d '{"code": "WELCOME10", "amount": 3348}'

    3. Sync a product as an admin:
        curl -X POST http://localhost:8003/sync-product-to-stripe \
          -H "Authorization: Bearer <access token>" \
          -H "Content-Type: application/json" \
          -d '{"productId": "<product uuid>"}'
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, status
from fastapi.responses import JSONResponse
from pydantic_settings import BaseSettings
from sqlalchemy.orm import Session

from services.payment_service.auth import AdminAuthenticator
from services.payment_service.discounts import (
    InvalidDiscountError,
    apply_discount,
    discount_amount,
    find_redeemable,
)
from services.payment_service.intent_metadata import ItemsTooLargeError, items_from_metadata, items_metadata
from services.payment_service.repository import PaymentRepository
from services.payment_service.schemas import (
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreatePaymentIntentRequest,
    CreatePaymentIntentResponse,
    DeleteProductRequest,
    HealthResponse,
    SyncDiscountRequest,
    SyncProductRequest,
    ValidateDiscountRequest,
    ValidateDiscountResponse,
)
from services.payment_service.stripe_gateway import PaymentGatewayError, StripeGateway
from services.payment_service.stripe_sync import (
    DiscountAlreadySyncedError,
    RecordNotFoundError,
    StripeSyncService,
)
from shared.auth import AuthorizationError
from shared.database import get_db, init_db
from shared.events import (
    DiscountSyncedEvent,
    PaymentIntentCreatedEvent,
    PaymentSucceededEvent,
    ProductSyncedEvent,
)
from shared.kafka_client import BaseKafkaProducer, publish_quietly
from shared.logging_config import setup_logging
from shared.topic_initializer import create_topics

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings."""

    kafka_bootstrap_servers: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
    stripe_secret_key: str = os.getenv("STRIPE_SECRET_KEY", "")
    auth_url: str = os.getenv("AUTH_URL", "http://localhost:54321")
    auth_api_key: str = os.getenv("AUTH_API_KEY", "")
    payment_service_port: int = int(os.getenv("PAYMENT_SERVICE_PORT", "8003"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()

# Global instances
producer: Optional[BaseKafkaProducer] = None
gateway: Optional[StripeGateway] = None
authenticator: Optional[AdminAuthenticator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage app lifecycle."""
    global producer, gateway, authenticator

    setup_logging("payment-service", level=settings.log_level)
    logger.info("Starting Payment Service...")

    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY is not set; Stripe calls will fail")
    gateway = StripeGateway(settings.stripe_secret_key)
    authenticator = AdminAuthenticator(settings.auth_url, settings.auth_api_key)

    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    try:
        create_topics(settings.kafka_bootstrap_servers)
        producer = BaseKafkaProducer(settings.kafka_bootstrap_servers, client_id="payment-producer")
        logger.info("Kafka producer initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Kafka producer: {e}")
        raise

    yield

    logger.info("Shutting down Payment Service...")
    if producer:
        producer.close()
    if authenticator:
        authenticator.close()


app = FastAPI(title="Payment Service", version="1.0.0", lifespan=lifespan)


def get_producer() -> Optional[BaseKafkaProducer]:
    return producer


def get_gateway() -> StripeGateway:
    return gateway


def get_authenticator() -> AdminAuthenticator:
    return authenticator


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def sync_error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _metadata_value(intent: Any, key: str) -> Optional[str]:
    metadata = getattr(intent, "metadata", None)
    if not metadata or key not in metadata:
        return None
    return metadata[key]


def _ensure_customer(repo: PaymentRepository, stripe_gateway: StripeGateway, user_id: str) -> Optional[str]:
    """Stripe customer id for a user profile, created on first checkout."""
    profile = repo.get_profile(user_id)
    if profile is None:
        logger.warning(f"No profile for user {user_id}, creating intent without a customer")
        return None
    if profile.stripe_customer_id:
        return profile.stripe_customer_id

    customer_id = stripe_gateway.create_customer(user_id, name=profile.full_name)
    repo.set_stripe_customer(profile, customer_id)
    return customer_id


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", service="payment-service", version="1.0.0")


@app.post("/create-payment-intent", response_model=CreatePaymentIntentResponse)
async def create_payment_intent(
    request: CreatePaymentIntentRequest,
    db: Session = Depends(get_db),
    stripe_gateway: StripeGateway = Depends(get_gateway),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
):
    """Create a payment intent for the cart total, minus any discount."""
    if request.amount <= 0:
        return error_response("Invalid amount", status.HTTP_400_BAD_REQUEST)
    if not request.items:
        return error_response("No items provided", status.HTTP_400_BAD_REQUEST)

    repo = PaymentRepository(db)
    amount = request.amount
    metadata: Dict[str, str] = {"user_id": request.user_id or "guest"}
    try:
        metadata.update(
            items_metadata([{"product_id": item.product_id, "quantity": item.quantity} for item in request.items])
        )
    except ItemsTooLargeError as e:
        return error_response(str(e), status.HTTP_400_BAD_REQUEST)

    discount_code = None
    if request.discount_code:
        try:
            discount = find_redeemable(repo, request.discount_code)
            amount = apply_discount(discount, request.amount)
        except InvalidDiscountError as e:
            return error_response(str(e), status.HTTP_400_BAD_REQUEST)
        discount_code = discount.code
        metadata["discount_code"] = discount.code
        metadata["discount_amount"] = str(request.amount - amount)
        metadata["original_amount"] = str(request.amount)

    try:
        customer_id = _ensure_customer(repo, stripe_gateway, request.user_id) if request.user_id else None
        intent = stripe_gateway.create_payment_intent(amount, metadata, customer_id=customer_id)
    except PaymentGatewayError as e:
        return error_response(e.message, status.HTTP_500_INTERNAL_SERVER_ERROR)
    except Exception as e:
        logger.exception("Error creating payment intent")
        return error_response(str(e) or "Failed to create payment intent", status.HTTP_500_INTERNAL_SERVER_ERROR)

    publish_quietly(
        producer,
        PaymentIntentCreatedEvent(
            payment_intent_id=intent.id,
            user_id=metadata["user_id"],
            amount=amount,
            currency=StripeGateway.CURRENCY,
            discount_code=discount_code,
        ),
    )
    return CreatePaymentIntentResponse(client_secret=intent.client_secret, payment_intent_id=intent.id, amount=amount)


@app.post("/validate-discount", response_model=ValidateDiscountResponse, response_model_exclude_none=True)
async def validate_discount(request: ValidateDiscountRequest, db: Session = Depends(get_db)) -> ValidateDiscountResponse:
    """Preview what a discount code takes off an amount."""
    try:
        discount = find_redeemable(PaymentRepository(db), request.code)
        discounted = apply_discount(discount, request.amount)
    except InvalidDiscountError as e:
        return ValidateDiscountResponse(valid=False, error=str(e))

    return ValidateDiscountResponse(
        valid=True,
        code=discount.code,
        discount_amount=discount_amount(discount, request.amount),
        amount=discounted,
    )


@app.post("/confirm-payment", response_model=ConfirmPaymentResponse)
async def confirm_payment(
    request: ConfirmPaymentRequest,
    db: Session = Depends(get_db),
    stripe_gateway: StripeGateway = Depends(get_gateway),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
):
    """Confirm a payment intent with the buyer's contact and shipping details."""
    shipping = None
    if request.address and request.address.line1:
        shipping = {
            "name": request.full_name,
            "address": {
                "line1": request.address.line1,
                "city": request.address.city,
                "state": request.address.state,
                "postal_code": request.address.postal_code,
                "country": request.address.country,
            },
        }
        if request.phone:
            shipping["phone"] = request.phone

    try:
        intent = stripe_gateway.confirm_payment_intent(
            request.client_secret,
            receipt_email=request.receipt_email,
            shipping=shipping,
            payment_method=request.payment_method,
            return_url=request.return_url,
        )
    except PaymentGatewayError as e:
        return error_response(e.message, e.status_code)

    if intent.status == "succeeded":
        discount_code = _metadata_value(intent, "discount_code")
        if discount_code and not PaymentRepository(db).record_redemption(discount_code):
            logger.warning(f"Payment {intent.id} used discount {discount_code} past its redemption limit")
        items = items_from_metadata(intent.metadata or {})
        publish_quietly(
            producer,
            PaymentSucceededEvent(
                payment_intent_id=intent.id,
                user_id=_metadata_value(intent, "user_id") or "guest",
                amount=intent.amount,
                currency=StripeGateway.CURRENCY,
                receipt_email=request.receipt_email,
                items=items,
            ),
        )
    return ConfirmPaymentResponse(status=intent.status, payment_intent_id=intent.id)


@app.post("/sync-product-to-stripe")
async def sync_product_to_stripe(
    request: SyncProductRequest,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    stripe_gateway: StripeGateway = Depends(get_gateway),
    admin_auth: AdminAuthenticator = Depends(get_authenticator),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
):
    """Create or update the Stripe product and price for a catalog product."""
    repo = PaymentRepository(db)
    try:
        admin_auth.require_admin(authorization, repo)
    except AuthorizationError as e:
        return sync_error(e.message, e.status_code)

    try:
        stripe_product_id, stripe_price_id = StripeSyncService(repo, stripe_gateway).sync_product(request.product_id)
    except RecordNotFoundError as e:
        return sync_error(str(e), status.HTTP_404_NOT_FOUND)
    except Exception as e:
        logger.error(f"Error syncing product {request.product_id} to Stripe: {e}")
        return sync_error(str(e) or "Failed to sync product", status.HTTP_500_INTERNAL_SERVER_ERROR)

    publish_quietly(
        producer,
        ProductSyncedEvent(
            product_id=request.product_id,
            stripe_product_id=stripe_product_id,
            stripe_price_id=stripe_price_id,
        ),
    )
    return {"success": True, "stripeProductId": stripe_product_id, "stripePriceId": stripe_price_id}


@app.post("/sync-discount-to-stripe")
async def sync_discount_to_stripe(
    request: SyncDiscountRequest,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    stripe_gateway: StripeGateway = Depends(get_gateway),
    admin_auth: AdminAuthenticator = Depends(get_authenticator),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
):
    """Create the Stripe coupon for a discount code."""
    repo = PaymentRepository(db)
    try:
        admin_auth.require_admin(authorization, repo)
    except AuthorizationError as e:
        return sync_error(e.message, e.status_code)

    try:
        coupon_id = StripeSyncService(repo, stripe_gateway).sync_discount(request.discount_id)
    except RecordNotFoundError as e:
        return sync_error(str(e), status.HTTP_404_NOT_FOUND)
    except DiscountAlreadySyncedError as e:
        return sync_error(str(e), status.HTTP_400_BAD_REQUEST)
    except Exception as e:
        logger.error(f"Error syncing discount {request.discount_id} to Stripe: {e}")
        return sync_error(str(e) or "Failed to sync discount", status.HTTP_500_INTERNAL_SERVER_ERROR)

    discount = repo.get_discount(request.discount_id)
    publish_quietly(
        producer,
        DiscountSyncedEvent(discount_id=discount.id, code=discount.code, stripe_coupon_id=coupon_id),
    )
    return {"success": True, "stripeCouponId": coupon_id}


@app.post("/delete-product-from-stripe")
async def delete_product_from_stripe(
    request: DeleteProductRequest,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    stripe_gateway: StripeGateway = Depends(get_gateway),
    admin_auth: AdminAuthenticator = Depends(get_authenticator),
):
    """Deactivate the price and archive the Stripe product."""
    repo = PaymentRepository(db)
    try:
        admin_auth.require_admin(authorization, repo)
    except AuthorizationError as e:
        return sync_error(e.message, e.status_code)

    try:
        StripeSyncService(repo, stripe_gateway).archive_product(request.stripe_product_id, request.stripe_price_id)
    except ValueError as e:
        return sync_error(str(e), status.HTTP_400_BAD_REQUEST)
    except Exception as e:
        logger.error(f"Error archiving Stripe product {request.stripe_product_id}: {e}")
        return sync_error(str(e) or "Failed to delete product", status.HTTP_500_INTERNAL_SERVER_ERROR)

    return {"success": True, "message": "Product archived in Stripe"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.payment_service_port)
