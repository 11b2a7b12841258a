"""
Client-side cart store.

The store keeps the last cart it fetched and derives the badge count and
totals from it. The backend (database or cart service) is the only source of
truth: every successful mutation is followed by a full re-fetch, so the most
recent successful re-fetch wins.

Failure policy:
    reads   fail open   a failed fetch logs and leaves an empty cart
    writes  fail closed a failed add/update/remove/clear logs and re-raises

Identity is explicit: the store owns a user id once signed in, and otherwise
asks the SessionIdentityResolver for the guest session id.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from services.cart_service.cart_repository import CartRepository, MergeResult
from services.cart_service.schemas import CartLine
from shared.owners import GuestOwner, Owner, UserOwner
from shared.pricing import to_minor_units, total_items, total_price
from storefront.identity import SessionIdentityResolver

logger = logging.getLogger(__name__)


class CartMergeError(Exception):
    """Guest cart could not be merged into the signed-in user's cart."""


class DirectCartBackend:
    """Cart backend reading and writing the cart tables directly."""

    def __init__(self, db: Session):
        self.repo = CartRepository(db)

    def list_lines(self, owner: Owner) -> List[CartLine]:
        return [CartLine.model_validate(item) for item in self.repo.list_items(owner)]

    def add_item(self, owner: Owner, product_id: str, quantity: int = 1) -> None:
        self.repo.add_item(owner, product_id, quantity)

    def set_quantity(self, owner: Owner, item_id: str, quantity: int) -> None:
        self.repo.set_quantity(item_id, quantity)

    def delete_item(self, owner: Owner, item_id: str) -> None:
        self.repo.delete_item(item_id)

    def clear(self, owner: Owner) -> None:
        self.repo.clear(owner)

    def merge_guest_cart(self, session_id: str, user_id: str) -> MergeResult:
        return self.repo.merge_guest_cart(session_id, user_id)


class CartStore:
    """Cart state for one shopper."""

    def __init__(self, backend, resolver: SessionIdentityResolver, user_id: Optional[str] = None):
        self.backend = backend
        self.resolver = resolver
        self.user_id = user_id
        self.items: List[CartLine] = []

    @property
    def owner(self) -> Owner:
        if self.user_id:
            return UserOwner(user_id=self.user_id)
        return GuestOwner(session_id=self.resolver.get_session_id())

    def fetch_cart(self) -> List[CartLine]:
        """Reload the cart. Errors are logged and leave the cart empty."""
        owner = self.owner
        try:
            self.items = list(self.backend.list_lines(owner))
        except Exception as e:
            logger.error(f"Error fetching cart for {owner}: {e}", extra={"owner": str(owner)})
            self.items = []
        return self.items

    def add_to_cart(self, product_id: str, quantity: int = 1) -> None:
        owner = self.owner
        try:
            self.backend.add_item(owner, product_id, quantity)
        except Exception as e:
            logger.error(f"Error adding product {product_id} to cart: {e}", extra={"owner": str(owner)})
            raise
        self.fetch_cart()

    def update_quantity(self, item_id: str, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line."""
        if quantity <= 0:
            self.remove_from_cart(item_id)
            return

        owner = self.owner
        try:
            self.backend.set_quantity(owner, item_id, quantity)
        except Exception as e:
            logger.error(f"Error updating quantity of cart item {item_id}: {e}", extra={"owner": str(owner)})
            raise
        self.fetch_cart()

    def remove_from_cart(self, item_id: str) -> None:
        owner = self.owner
        try:
            self.backend.delete_item(owner, item_id)
        except Exception as e:
            logger.error(f"Error removing cart item {item_id}: {e}", extra={"owner": str(owner)})
            raise
        self.fetch_cart()

    def clear_cart(self) -> None:
        owner = self.owner
        try:
            self.backend.clear(owner)
        except Exception as e:
            logger.error(f"Error clearing cart: {e}", extra={"owner": str(owner)})
            raise
        self.items = []

    def get_total_items(self) -> int:
        return total_items(self.items)

    def get_total_price(self) -> Decimal:
        return total_price(self.items)

    def get_payable_amount(self) -> int:
        """Cart total in cents."""
        return to_minor_units(self.get_total_price())

    def sign_in(self, user_id: str) -> Optional[MergeResult]:
        """
        Switch to the signed-in user and fold any guest cart into theirs.

        The merge runs once per stored session id. On success the session id
        is cleared; on failure it is kept so the next sign-in retries, and
        CartMergeError is raised.
        """
        self.user_id = user_id
        session_id = self.resolver.peek()
        if not session_id:
            self.fetch_cart()
            return None

        try:
            result = self.backend.merge_guest_cart(session_id, user_id)
        except Exception as e:
            logger.error(
                f"Error merging guest cart {session_id} into user {user_id}: {e}",
                extra={"event_type": "cart.merged", "owner": f"user:{user_id}"},
            )
            self.fetch_cart()
            raise CartMergeError(f"Failed to merge guest cart: {e}") from e

        self.resolver.clear()
        logger.info(f"Merged guest cart into user {user_id}: {result.moved} moved, {result.combined} combined")
        self.fetch_cart()
        return result

    def sign_out(self) -> None:
        self.user_id = None
        self.fetch_cart()
