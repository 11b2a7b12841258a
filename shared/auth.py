"""
Bearer-token identity shared by the storefront services.

Tokens are issued by the hosted auth service; `GET {AUTH_URL}/auth/v1/user`
with the token and the project API key answers with the user record.
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class AuthorizationError(Exception):
    """Caller could not be authenticated or is not allowed."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def bearer_token(authorization: Optional[str]) -> str:
    """Token from an `Authorization: Bearer ...` header value."""
    if not authorization:
        raise AuthorizationError("No authorization header")
    token = authorization.removeprefix("Bearer ").strip()
    if not token:
        raise AuthorizationError("Unauthorized")
    return token


class TokenVerifier:
    """Resolves bearer tokens to user ids through the hosted auth service."""

    def __init__(self, auth_url: str, api_key: str, http: Optional[httpx.Client] = None, timeout: float = 5.0):
        self.auth_url = auth_url.rstrip("/")
        self.api_key = api_key
        self.http = http or httpx.Client(timeout=timeout)

    def resolve_user_id(self, token: str) -> str:
        try:
            response = self.http.get(
                f"{self.auth_url}/auth/v1/user",
                headers={"Authorization": f"Bearer {token}", "apikey": self.api_key},
            )
        except httpx.HTTPError as e:
            logger.error(f"Auth service unreachable: {e}")
            raise AuthorizationError("Unauthorized")

        if response.status_code != 200:
            raise AuthorizationError("Unauthorized")
        user_id = response.json().get("id")
        if not user_id:
            raise AuthorizationError("Unauthorized")
        return user_id

    def authenticate(self, authorization: Optional[str]) -> str:
        """User id for an Authorization header value, or AuthorizationError."""
        return self.resolve_user_id(bearer_token(authorization))

    def close(self) -> None:
        self.http.close()
