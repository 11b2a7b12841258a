from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProductSummary(BaseModel):
    """Product fields the cart needs for display and totals."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    price: Decimal
    image_url: Optional[str] = None
    stock_quantity: int = 0


class CartLine(BaseModel):
    """Cart item enriched with its product (None when the product is gone)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str
    quantity: int
    product: Optional[ProductSummary] = None


class AddItemRequest(BaseModel):
    """Request model for adding a product to the cart."""

    product_id: str
    quantity: int = Field(default=1, ge=1)


class UpdateQuantityRequest(BaseModel):
    """Request model for updating item quantity; <= 0 removes the item."""

    quantity: int


class MergeRequest(BaseModel):
    """Request model for merging a guest session into the signed-in user's cart."""

    session_id: str = Field(min_length=1)


class CartResponse(BaseModel):
    """Response model for cart."""

    owner: str
    items: List[CartLine]
    total_items: int
    total_price: Decimal


class MergeResponse(BaseModel):
    """Response model for a guest cart merge."""

    moved: int
    combined: int
    cart: CartResponse


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    service: str
    version: str
