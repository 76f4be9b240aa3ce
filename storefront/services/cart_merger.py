"""Fold a guest cart into a user's cart when the guest signs in."""
from dataclasses import dataclass

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.core.errors import ValidationError
from storefront.core.identity import GuestIdentity, UserIdentity
from storefront.db.models import CartItem
from storefront.db.session import transaction
from storefront.security.utils import now_utc
from storefront.store import cart_store

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MergeResult:
    merged: int = 0   # guest lines folded into an existing user line
    moved: int = 0    # guest lines re-parented onto the user's cart

    @property
    def noop(self) -> bool:
        return self.merged == 0 and self.moved == 0


def _refresh_from(target: CartItem, source: CartItem) -> None:
    target.unit_price = source.unit_price
    target.stock = source.stock
    target.name = source.name
    target.sku = source.sku
    target.thumbnail_url = source.thumbnail_url


def claim(db: Session, guest_session_id: str, user_id: int) -> MergeResult:
    """Merge the cart of ``guest_session_id`` into ``user_id``'s cart in one transaction.

    Re-running a claim whose guest cart is already gone is a no-op.
    """
    if not guest_session_id:
        raise ValidationError('Guest ID required', {'field': 'guestId'})

    with transaction(db):
        guest_cart = cart_store.find_cart(db, GuestIdentity(guest_session_id), lock=True)
        if guest_cart is None:
            logger.info('cart_claim_noop', user_id=user_id)
            return MergeResult()

        guest_lines = db.execute(
            select(CartItem).where(CartItem.cart_id == guest_cart.id).order_by(CartItem.id)
        ).scalars().all()
        if not guest_lines:
            db.delete(guest_cart)
            return MergeResult()

        user_cart = cart_store.get_or_create_cart(db, UserIdentity(user_id))
        user_lines = db.execute(
            select(CartItem).where(CartItem.cart_id == user_cart.id)
        ).scalars().all()
        by_line = {(line.product_id, line.variant_key): line for line in user_lines}

        merged, move_ids = 0, []
        for line in guest_lines:
            existing = by_line.get((line.product_id, line.variant_key))
            if existing is None:
                move_ids.append(line.id)
                continue
            existing.quantity += line.quantity
            if line.updated_at and (existing.updated_at is None or line.updated_at > existing.updated_at):
                _refresh_from(existing, line)
                existing.updated_at = line.updated_at
            db.delete(line)
            merged += 1
        db.flush()

        if move_ids:
            db.execute(
                update(CartItem).where(CartItem.id.in_(move_ids)).values(cart_id=user_cart.id)
            )
        db.delete(guest_cart)
        user_cart.last_activity_at = now_utc()

    logger.info('cart_claimed', user_id=user_id, guest_cart_id=guest_cart.id, merged=merged, moved=len(move_ids))
    return MergeResult(merged=merged, moved=len(move_ids))
