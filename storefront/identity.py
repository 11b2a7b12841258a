"""
Anonymous shopper identity.

A guest gets a session id the first time the cart is touched, and keeps it
across restarts until a sign-in merges the guest cart into the user's cart.

    session_<epoch milliseconds>_<9 random base36 characters>
"""

import logging
import secrets
import string
import time
from typing import Optional

import redis

logger = logging.getLogger(__name__)

SESSION_KEY = "cart_session_id"
_BASE36 = string.digits + string.ascii_lowercase


def new_session_id() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


class RedisSessionStorage:
    """Durable key/value storage for one client installation."""

    def __init__(self, redis_client: redis.Redis, namespace: str):
        self.redis = redis_client
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"storefront:{self.namespace}:{key}"

    def get(self, key: str) -> Optional[str]:
        value = self.redis.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode()
        return value

    def set(self, key: str, value: str) -> None:
        self.redis.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self.redis.delete(self._key(key))


class SessionIdentityResolver:
    """Hands out the stable anonymous session id for this client."""

    def __init__(self, storage, key: str = SESSION_KEY):
        self.storage = storage
        self.key = key

    def get_session_id(self) -> str:
        """Return the stored session id, generating and persisting one on first use."""
        session_id = self.storage.get(self.key)
        if session_id:
            return session_id

        session_id = new_session_id()
        self.storage.set(self.key, session_id)
        logger.info(f"Created anonymous session {session_id}")
        return session_id

    def peek(self) -> Optional[str]:
        """Stored session id, or None; never generates one."""
        return self.storage.get(self.key) or None

    def clear(self) -> None:
        self.storage.delete(self.key)
