import logging
from typing import Any, Dict, Optional

import stripe

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Stripe call failed. `message` is safe to show to the buyer or admin."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _wrap(error: "stripe.StripeError", status_code: int = 502) -> PaymentGatewayError:
    message = getattr(error, "user_message", None) or str(error) or "Payment provider error"
    return PaymentGatewayError(message, status_code=status_code)


class StripeGateway:
    """Thin wrapper over the Stripe SDK used by the payment service."""

    CURRENCY = "usd"

    def __init__(self, api_key: str):
        stripe.api_key = api_key

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def create_customer(self, user_id: str, name: Optional[str] = None) -> str:
        try:
            customer = stripe.Customer.create(metadata={"user_id": user_id}, name=name or None)
        except stripe.StripeError as e:
            logger.error(f"Stripe customer creation failed for user {user_id}: {e}")
            raise _wrap(e)
        logger.info(f"Created Stripe customer {customer.id} for user {user_id}")
        return customer.id

    def create_payment_intent(
        self,
        amount: int,
        metadata: Dict[str, str],
        customer_id: Optional[str] = None,
    ):
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": self.CURRENCY,
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata,
        }
        if customer_id:
            params["customer"] = customer_id
        try:
            intent = stripe.PaymentIntent.create(**params)
        except stripe.StripeError as e:
            logger.error(f"Stripe payment intent creation failed: {e}")
            raise _wrap(e)
        logger.info(f"Created payment intent {intent.id} for {amount} {self.CURRENCY}")
        return intent

    def confirm_payment_intent(
        self,
        client_secret: str,
        receipt_email: str,
        shipping: Optional[Dict[str, Any]] = None,
        payment_method: Optional[str] = None,
        return_url: Optional[str] = None,
    ):
        """Confirm the intent identified by its client secret."""
        intent_id = client_secret.split("_secret_")[0]
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as e:
            raise _wrap(e, status_code=400)
        if intent.client_secret != client_secret:
            raise PaymentGatewayError("Invalid client secret", status_code=400)

        params: Dict[str, Any] = {"receipt_email": receipt_email}
        if shipping:
            params["shipping"] = shipping
        if payment_method:
            params["payment_method"] = payment_method
        if return_url:
            params["return_url"] = return_url

        try:
            confirmed = stripe.PaymentIntent.confirm(intent_id, **params)
        except stripe.CardError as e:
            logger.info(f"Card declined for payment intent {intent_id}: {e.user_message}")
            raise _wrap(e, status_code=402)
        except stripe.StripeError as e:
            logger.error(f"Stripe confirmation failed for {intent_id}: {e}")
            raise _wrap(e, status_code=402)
        logger.info(f"Payment intent {intent_id} confirmed with status {confirmed.status}")
        return confirmed

    # ------------------------------------------------------------------
    # Catalog / coupons (admin sync)
    # ------------------------------------------------------------------

    def create_product(self, **params):
        return stripe.Product.create(**params)

    def update_product(self, product_id: str, **params):
        return stripe.Product.modify(product_id, **params)

    def create_price(self, **params):
        return stripe.Price.create(**params)

    def retrieve_price(self, price_id: str):
        return stripe.Price.retrieve(price_id)

    def update_price(self, price_id: str, **params):
        return stripe.Price.modify(price_id, **params)

    def create_coupon(self, **params):
        return stripe.Coupon.create(**params)
