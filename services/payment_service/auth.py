import logging
from typing import Optional

from services.payment_service.repository import PaymentRepository
from shared.auth import AuthorizationError, TokenVerifier

logger = logging.getLogger(__name__)


class AdminAuthenticator(TokenVerifier):
    """
    Resolves a bearer token through the hosted auth service and checks that
    the caller's profile carries the admin role.
    """

    def require_admin(self, authorization: Optional[str], repo: PaymentRepository) -> str:
        """Return the admin's user id, or raise AuthorizationError."""
        user_id = self.authenticate(authorization)
        profile = repo.get_profile(user_id)
        if profile is None or profile.role != "admin":
            logger.warning(f"Rejected admin request from user {user_id}")
            raise AuthorizationError("Admin access required", status_code=403)
        return user_id
