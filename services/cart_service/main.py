"""
cart_service/main.py - Shopping Cart Service

PURPOSE:
    HTTP surface over the cart tables. Signed-in users and anonymous sessions
    both own carts; the database is the source of truth and every mutation
    answers with the full refreshed cart.

IDENTITY:
    Authorization  Bearer access token of a signed-in user (takes precedence);
                   resolved through the hosted auth service, 401 when invalid
    X-Session-Id   anonymous session id, used when no token is sent

API ENDPOINTS:
    GET    /cart                    - View cart contents and totals
    POST   /cart/items              - Add product (increments an existing line)
    PUT    /cart/items/{item_id}    - Set quantity (<= 0 removes the line)
    DELETE /cart/items/{item_id}    - Remove line
    DELETE /cart                    - Clear cart
    POST   /cart/merge              - Merge a guest session into the user's cart
    GET    /health                  - Health check

KAFKA EVENTS PUBLISHED:
    - cart.item_added
    - cart.item_removed
    - cart.merged

TESTING COMMANDS:
    1. Add a product as a guest:
        curl -X POST http://localhost:8001/cart/items \
          -H "X-Session-Id: session_1760778723_k3j2h1g0f" \
          -H "Content-Type: application/json" \
          -d '{"product_id": "<product uuid>", "quantity": 2}'

    2. Merge the guest cart after sign-in:
        curl -X POST http://localhost:8001/cart/merge \
          -H "Authorization: Bearer <access token>" \
          -H "Content-Type: application/json" \
          -d '{"session_id": "session_1760778723_k3j2h1g0f"}'

    3. View the user's cart:
        curl http://localhost:8001/cart -H "Authorization: Bearer <access token>"
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, status
from pydantic_settings import BaseSettings
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from services.cart_service.cart_repository import (
    CartItemNotFoundError,
    CartRepository,
    ProductNotFoundError,
)
from services.cart_service.schemas import (
    AddItemRequest,
    CartLine,
    CartResponse,
    HealthResponse,
    MergeRequest,
    MergeResponse,
    UpdateQuantityRequest,
)
from shared.auth import AuthorizationError, TokenVerifier
from shared.database import get_db, init_db
from shared.events import CartItemAddedEvent, CartItemRemovedEvent, CartMergedEvent
from shared.kafka_client import BaseKafkaProducer, publish_quietly
from shared.logging_config import setup_logging
from shared.owners import Owner, UserOwner, owner_from_ids
from shared.pricing import total_items, total_price
from shared.topic_initializer import create_topics

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings."""

    kafka_bootstrap_servers: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
    auth_url: str = os.getenv("AUTH_URL", "http://localhost:54321")
    auth_api_key: str = os.getenv("AUTH_API_KEY", "")
    cart_service_port: int = int(os.getenv("CART_SERVICE_PORT", "8001"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()

# Global instances
producer: Optional[BaseKafkaProducer] = None
verifier: Optional[TokenVerifier] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage app lifecycle."""
    global producer, verifier

    setup_logging("cart-service", level=settings.log_level)
    logger.info("Starting Cart Service...")
    verifier = TokenVerifier(settings.auth_url, settings.auth_api_key)

    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    try:
        create_topics(settings.kafka_bootstrap_servers)
        producer = BaseKafkaProducer(settings.kafka_bootstrap_servers, client_id="cart-producer")
        logger.info("Kafka producer initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Kafka producer: {e}")
        raise

    yield

    logger.info("Shutting down Cart Service...")
    if producer:
        producer.close()
    if verifier:
        verifier.close()


app = FastAPI(title="Cart Service", version="1.0.0", lifespan=lifespan)


def get_producer() -> Optional[BaseKafkaProducer]:
    return producer


def get_verifier() -> TokenVerifier:
    return verifier


def get_owner(
    authorization: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
    token_verifier: TokenVerifier = Depends(get_verifier),
) -> Owner:
    """Resolve the cart owner: a verified bearer token, else the guest session id."""
    user_id = None
    if authorization:
        try:
            user_id = token_verifier.authenticate(authorization)
        except AuthorizationError as e:
            raise HTTPException(status_code=e.status_code, detail=e.message)
    try:
        return owner_from_ids(user_id, x_session_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def build_cart_response(repo: CartRepository, owner: Owner) -> CartResponse:
    lines = [CartLine.model_validate(item) for item in repo.list_items(owner)]
    return CartResponse(
        owner=str(owner),
        items=lines,
        total_items=total_items(lines),
        total_price=total_price(lines),
    )


def _ensure_owned(repo: CartRepository, item_id: str, owner: Owner) -> None:
    item = repo.get_item(item_id)
    owned = item is not None and (
        item.user_id == owner.user_id
        if isinstance(owner, UserOwner)
        else item.user_id is None and item.session_id == owner.session_id
    )
    if not owned:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Cart item {item_id} not found")


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", service="cart-service", version="1.0.0")


@app.get("/cart", response_model=CartResponse)
async def get_cart(owner: Owner = Depends(get_owner), db: Session = Depends(get_db)) -> CartResponse:
    """Get the owner's cart."""
    try:
        return build_cart_response(CartRepository(db), owner)
    except SQLAlchemyError as e:
        logger.error(f"Error getting cart for {owner}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to load cart")


@app.post("/cart/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_item(
    request: AddItemRequest,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
) -> CartResponse:
    """Add product to cart and publish event."""
    repo = CartRepository(db)
    try:
        repo.add_item(owner, request.product_id, request.quantity)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SQLAlchemyError as e:
        logger.error(f"Error adding item to cart: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to add item to cart")

    publish_quietly(
        producer,
        CartItemAddedEvent(owner=str(owner), product_id=request.product_id, quantity=request.quantity),
    )
    return build_cart_response(repo, owner)


@app.put("/cart/items/{item_id}", response_model=CartResponse)
async def update_item_quantity(
    item_id: str,
    request: UpdateQuantityRequest,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
) -> CartResponse:
    """Update item quantity in cart. If quantity is <= 0, remove the item."""
    repo = CartRepository(db)
    _ensure_owned(repo, item_id, owner)
    try:
        repo.set_quantity(item_id, request.quantity)
    except CartItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SQLAlchemyError as e:
        logger.error(f"Error updating item quantity: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update cart item")

    if request.quantity <= 0:
        publish_quietly(producer, CartItemRemovedEvent(owner=str(owner), item_id=item_id))
    return build_cart_response(repo, owner)


@app.delete("/cart/items/{item_id}", response_model=CartResponse)
async def remove_item(
    item_id: str,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
) -> CartResponse:
    """Remove item from cart and publish event."""
    repo = CartRepository(db)
    _ensure_owned(repo, item_id, owner)
    try:
        repo.delete_item(item_id)
    except SQLAlchemyError as e:
        logger.error(f"Error removing item from cart: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to remove cart item")

    publish_quietly(producer, CartItemRemovedEvent(owner=str(owner), item_id=item_id))
    return build_cart_response(repo, owner)


@app.delete("/cart", response_model=CartResponse)
async def clear_cart(owner: Owner = Depends(get_owner), db: Session = Depends(get_db)) -> CartResponse:
    """Delete every item in the owner's cart."""
    repo = CartRepository(db)
    try:
        repo.clear(owner)
    except SQLAlchemyError as e:
        logger.error(f"Error clearing cart: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to clear cart")
    return build_cart_response(repo, owner)


@app.post("/cart/merge", response_model=MergeResponse)
async def merge_guest_cart(
    request: MergeRequest,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    producer: Optional[BaseKafkaProducer] = Depends(get_producer),
) -> MergeResponse:
    """Merge a guest session's cart into the signed-in user's cart."""
    if not isinstance(owner, UserOwner):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sign-in is required to merge a cart")

    repo = CartRepository(db)
    try:
        result = repo.merge_guest_cart(request.session_id, owner.user_id)
    except SQLAlchemyError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to merge guest cart")

    if result.moved or result.combined:
        publish_quietly(
            producer,
            CartMergedEvent(
                session_id=request.session_id,
                user_id=owner.user_id,
                moved=result.moved,
                combined=result.combined,
            ),
        )
    return MergeResponse(moved=result.moved, combined=result.combined, cart=build_cart_response(repo, owner))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.cart_service_port)
