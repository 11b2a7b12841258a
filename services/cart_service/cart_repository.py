"""
Cart Repository Module

SQL persistence for cart lines. The database is the single source of truth for
cart contents; clients re-read the full cart after every mutation.

Key Features:
    - One row per (owner, product): adding an existing product increments it
    - Remove-on-empty: setting a quantity <= 0 deletes the row
    - Atomic guest-to-user merge in a single transaction with row locks
    - Guest adds and the merge of the same session are serialized; an add
      for an already merged session lands in the user's cart
    - Every mutation commits, or rolls back and re-raises

Ownership:
    Rows carry either user_id or session_id. Callers pass an Owner
    (UserOwner | GuestOwner); guest queries also require user_id IS NULL so a
    row that was already merged is never shown to the guest again.

Example Usage:
    ```python
    repo = CartRepository(db)
    guest = GuestOwner(session_id="session_1760778723_k3j2h1g0f")

    repo.add_item(guest, product_id, 2)
    repo.add_item(guest, product_id, 1)      # same row, quantity 3

    result = repo.merge_guest_cart(guest.session_id, user_id)
    # MergeResult(moved=1, combined=0)
    ```
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from shared.models import CartItem, MergedSession, Product
from shared.owners import GuestOwner, Owner, UserOwner

logger = logging.getLogger(__name__)


class CartItemNotFoundError(LookupError):
    """Raised when a cart item id does not exist."""


class ProductNotFoundError(LookupError):
    """Raised when adding a product that is not in the catalog."""


class MergeResult(BaseModel):
    """Outcome of a guest cart merge."""

    moved: int = 0
    combined: int = 0


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CartRepository:
    """Repository for cart lines in the relational store."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _owner_query(self, owner: Owner) -> Query:
        query = self.db.query(CartItem)
        if isinstance(owner, UserOwner):
            return query.filter(CartItem.user_id == owner.user_id)
        return query.filter(CartItem.session_id == owner.session_id, CartItem.user_id.is_(None))

    def list_items(self, owner: Owner) -> List[CartItem]:
        """Get the owner's cart lines with their products joined."""
        return self._owner_query(owner).order_by(CartItem.created_at, CartItem.id).all()

    def get_item(self, item_id: str) -> Optional[CartItem]:
        """Get a cart line by id."""
        return self.db.query(CartItem).filter(CartItem.id == item_id).first()

    def _lock_session(self, session_id: str) -> None:
        """Take the per-session transaction lock (PostgreSQL advisory lock)."""
        if self.db.get_bind().dialect.name == "postgresql":
            self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"cart-session:{session_id}"},
            )

    def find_item(self, owner: Owner, product_id: str, lock: bool = False) -> Optional[CartItem]:
        """Get the owner's line for a product, optionally row-locked."""
        query = self._owner_query(owner).filter(CartItem.product_id == product_id)
        if lock:
            query = query.with_for_update(of=CartItem)
        return query.first()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_item(self, owner: Owner, product_id: str, quantity: int = 1) -> CartItem:
        """Add a product to the owner's cart. Increment quantity if the line already exists."""
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")

        try:
            if self.db.get(Product, product_id) is None:
                raise ProductNotFoundError(f"Product {product_id} not found")

            if isinstance(owner, GuestOwner):
                self._lock_session(owner.session_id)
                merged = self.db.get(MergedSession, owner.session_id)
                if merged is not None:
                    logger.info(
                        f"Session {owner.session_id} was merged, adding product {product_id} to user {merged.user_id}",
                        extra={"owner": f"user:{merged.user_id}"},
                    )
                    owner = UserOwner(user_id=merged.user_id)

            item = self.find_item(owner, product_id, lock=True)
            if item:
                item.quantity += quantity
                item.updated_at = _now()
                logger.info(
                    f"Incremented product {product_id} to {item.quantity} in cart of {owner}",
                    extra={"owner": str(owner)},
                )
            else:
                item = CartItem(product_id=product_id, quantity=quantity)
                if isinstance(owner, UserOwner):
                    item.user_id = owner.user_id
                else:
                    item.session_id = owner.session_id
                self.db.add(item)
                logger.info(
                    f"Added product {product_id} x{quantity} to cart of {owner}",
                    extra={"owner": str(owner)},
                )

            self.db.commit()
            self.db.refresh(item)
            return item
        except (SQLAlchemyError, LookupError):
            self.db.rollback()
            raise

    def set_quantity(self, item_id: str, quantity: int) -> Optional[CartItem]:
        """Update a line's quantity. A quantity <= 0 deletes the line and returns None."""
        if quantity <= 0:
            if not self.delete_item(item_id):
                raise CartItemNotFoundError(f"Cart item {item_id} not found")
            return None

        try:
            item = self.db.query(CartItem).filter(CartItem.id == item_id).with_for_update(of=CartItem).first()
            if item is None:
                raise CartItemNotFoundError(f"Cart item {item_id} not found")

            item.quantity = quantity
            item.updated_at = _now()
            self.db.commit()
            self.db.refresh(item)
            logger.info(f"Updated cart item {item_id} quantity to {quantity}")
            return item
        except (SQLAlchemyError, LookupError):
            self.db.rollback()
            raise

    def delete_item(self, item_id: str) -> bool:
        """Delete a cart line. Returns True if a row was removed."""
        try:
            deleted = self.db.query(CartItem).filter(CartItem.id == item_id).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        if deleted:
            logger.info(f"Removed cart item {item_id}")
        else:
            logger.warning(f"Cart item {item_id} not found for removal")
        return bool(deleted)

    def clear(self, owner: Owner) -> int:
        """Delete all of the owner's lines. Returns the number removed."""
        try:
            deleted = self._owner_query(owner).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info(f"Cleared {deleted} items from cart of {owner}", extra={"owner": str(owner)})
        return deleted

    def merge_guest_cart(self, session_id: str, user_id: str) -> MergeResult:
        """
        Move a guest session's lines into a user's cart in one transaction.

        The session lock is taken first and the session is recorded as merged,
        so a concurrent guest add either commits before the merge (and is
        merged) or runs after it and is redirected to the user's cart.
        For a product present in both carts the quantities are summed into the
        user's row and the guest row is deleted; otherwise the guest row is
        reassigned to the user. Running it again is a no-op.
        """
        guest = GuestOwner(session_id=session_id)
        user = UserOwner(user_id=user_id)
        result = MergeResult()

        try:
            self._lock_session(session_id)
            self.db.merge(MergedSession(session_id=session_id, user_id=user_id, merged_at=_now()))

            guest_items = self._owner_query(guest).order_by(CartItem.created_at).with_for_update(of=CartItem).all()
            if not guest_items:
                logger.info(f"No guest items to merge for session {session_id}")
                self.db.commit()
                return result

            user_items = {
                item.product_id: item
                for item in self._owner_query(user).with_for_update(of=CartItem).all()
            }
            now = _now()

            for guest_item in guest_items:
                existing = user_items.get(guest_item.product_id)
                if existing:
                    existing.quantity += guest_item.quantity
                    existing.updated_at = now
                    self.db.delete(guest_item)
                    result.combined += 1
                else:
                    guest_item.user_id = user_id
                    guest_item.session_id = None
                    guest_item.updated_at = now
                    user_items[guest_item.product_id] = guest_item
                    result.moved += 1

            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Failed to merge guest cart {session_id} into user {user_id}")
            raise

        logger.info(
            f"Merged guest cart {session_id} into user {user_id}: "
            f"{result.moved} moved, {result.combined} combined",
            extra={"event_type": "cart.merged", "owner": str(user)},
        )
        return result
