from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Wire models use the camelCase field names the storefront sends."""

    model_config = ConfigDict(populate_by_name=True)


class PaymentItem(CamelModel):
    product_id: str = Field(alias="productId")
    quantity: int = Field(ge=1)


class CreatePaymentIntentRequest(CamelModel):
    """Request model for create-payment-intent."""

    amount: int
    user_id: Optional[str] = Field(default=None, alias="userId")
    items: List[PaymentItem] = Field(default_factory=list)
    discount_code: Optional[str] = Field(default=None, alias="discountCode")


class CreatePaymentIntentResponse(CamelModel):
    client_secret: str = Field(alias="clientSecret")
    payment_intent_id: str = Field(alias="paymentIntentId")
    amount: int


class ValidateDiscountRequest(CamelModel):
    code: str
    amount: int = Field(ge=0)


class ValidateDiscountResponse(CamelModel):
    valid: bool
    code: Optional[str] = None
    discount_amount: int = Field(default=0, alias="discountAmount")
    amount: Optional[int] = None
    error: Optional[str] = None


class ShippingAddress(CamelModel):
    line1: str
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    country: str = "US"


class ConfirmPaymentRequest(CamelModel):
    """Buyer-entered contact/shipping fields plus the intent's client secret."""

    client_secret: str = Field(alias="clientSecret")
    receipt_email: str = Field(alias="receiptEmail")
    full_name: str = Field(alias="fullName")
    phone: Optional[str] = None
    address: Optional[ShippingAddress] = None
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    return_url: Optional[str] = Field(default=None, alias="returnUrl")


class ConfirmPaymentResponse(CamelModel):
    status: str
    payment_intent_id: str = Field(alias="paymentIntentId")


class SyncProductRequest(CamelModel):
    product_id: str = Field(alias="productId")


class SyncDiscountRequest(CamelModel):
    discount_id: str = Field(alias="discountId")


class DeleteProductRequest(CamelModel):
    stripe_product_id: str = Field(alias="stripeProductId")
    stripe_price_id: Optional[str] = Field(default=None, alias="stripePriceId")


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    service: str
    version: str
