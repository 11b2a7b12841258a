import os

from pydantic_settings import BaseSettings


class StorefrontSettings(BaseSettings):
    """Storefront client settings."""

    cart_service_url: str = os.getenv("CART_SERVICE_URL", "http://localhost:8001")
    payment_service_url: str = os.getenv("PAYMENT_SERVICE_URL", "http://localhost:8003")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    client_id: str = os.getenv("STOREFRONT_CLIENT_ID", "default")
    request_timeout: float = float(os.getenv("STOREFRONT_REQUEST_TIMEOUT", "10"))
