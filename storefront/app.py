"""Wires the storefront client pieces from StorefrontSettings."""

import logging
from typing import Callable, Optional

import redis

from storefront.cart import CartStore
from storefront.checkout import CheckoutOrchestrator
from storefront.clients import CartServiceClient, PaymentServiceClient
from storefront.identity import RedisSessionStorage, SessionIdentityResolver
from storefront.settings import StorefrontSettings

logger = logging.getLogger(__name__)


class Storefront:
    """One shopper's cart and checkout, talking to the cart and payment services."""

    def __init__(
        self,
        settings: Optional[StorefrontSettings] = None,
        redis_client: Optional[redis.Redis] = None,
        user_id: Optional[str] = None,
        access_token: Optional[str] = None,
    ):
        self.settings = settings or StorefrontSettings()
        if redis_client is None:
            redis_client = redis.Redis.from_url(self.settings.redis_url, decode_responses=True)

        self.resolver = SessionIdentityResolver(RedisSessionStorage(redis_client, self.settings.client_id))
        self.cart_client = CartServiceClient(
            self.settings.cart_service_url,
            timeout=self.settings.request_timeout,
            access_token=access_token,
        )
        self.payments = PaymentServiceClient(self.settings.payment_service_url, timeout=self.settings.request_timeout)
        self.cart = CartStore(self.cart_client, self.resolver, user_id=user_id)
        logger.info(f"Storefront client ready for {self.cart.owner}")

    def sign_in(self, user_id: str, access_token: str):
        """Switch the cart to the signed-in user and merge the guest cart."""
        self.cart_client.access_token = access_token
        return self.cart.sign_in(user_id)

    def sign_out(self) -> None:
        self.cart.sign_out()
        self.cart_client.access_token = None

    def checkout(self, on_success: Optional[Callable[[str], None]] = None) -> CheckoutOrchestrator:
        return CheckoutOrchestrator(self.cart, self.payments, on_success=on_success)

    def close(self) -> None:
        self.cart_client.http.close()
        self.payments.http.close()
