"""Cart persistence keyed by the acting identity.

One cart per identity, created lazily on the first add. A line is identified by
``(product_id, normalized variant selections)``; adding the same line again
accumulates quantity instead of creating a duplicate row.
"""
import json
from typing import Any, List, Mapping, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.errors import AuthorizationError, NotFoundError, ValidationError
from storefront.core.identity import GuestIdentity, Identity, UserIdentity
from storefront.db.models import Cart, CartItem, Product
from storefront.db.session import transaction
from storefront.security.utils import now_utc
from storefront.store import catalog

logger = structlog.get_logger(__name__)


def normalize_variants(selections: Optional[Mapping[str, Any]]) -> dict:
    if selections is None:
        return {}
    if not isinstance(selections, Mapping):
        raise ValidationError('variantSelections must be an object')
    out = {}
    for key, value in selections.items():
        k = str(key).strip()
        if k:
            out[k] = str(value).strip()
    return dict(sorted(out.items()))


def variant_key(selections: Optional[Mapping[str, Any]]) -> str:
    return json.dumps(normalize_variants(selections), sort_keys=True, separators=(',', ':'))


def _require_identity(identity: Optional[Identity]) -> Identity:
    if not isinstance(identity, (UserIdentity, GuestIdentity)):
        raise AuthorizationError('No valid session')
    return identity


def _require_quantity(quantity: Any, allow_non_positive: bool = False) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError('Quantity must be a number', {'field': 'quantity'})
    if quantity <= 0 and not allow_non_positive:
        raise ValidationError('Quantity must be a positive number', {'field': 'quantity'})
    return quantity


def _owner_clause(identity: Identity):
    if isinstance(identity, UserIdentity):
        return Cart.user_id == identity.user_id
    return Cart.session_id == identity.session_id


def find_cart(db: Session, identity: Identity, lock: bool = False) -> Optional[Cart]:
    stmt = select(Cart).where(_owner_clause(_require_identity(identity)))
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().first()


def _insert_cart(db: Session, identity: Identity) -> bool:
    """Insert the identity's cart unless one exists; True when this call created it."""
    if db.get_bind().dialect.name == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    if isinstance(identity, UserIdentity):
        stmt = insert(Cart).values(user_id=identity.user_id)
    else:
        stmt = insert(Cart).values(session_id=identity.session_id)
    # a concurrent request may have created it first
    return db.execute(stmt.on_conflict_do_nothing()).rowcount == 1


def get_or_create_cart(db: Session, identity: Identity) -> Cart:
    cart = find_cart(db, identity, lock=True)
    if cart is not None:
        return cart
    created = _insert_cart(db, identity)
    cart = find_cart(db, identity, lock=True)
    if created:
        logger.info('cart_created', cart_id=cart.id, guest=isinstance(identity, GuestIdentity))
    return cart


def has_cart(db: Session, session_id: str) -> bool:
    return find_cart(db, GuestIdentity(session_id)) is not None


def get_cart(db: Session, identity: Identity) -> List[CartItem]:
    cart = find_cart(db, identity)
    if cart is None:
        return []
    return list(db.execute(select(CartItem).where(CartItem.cart_id == cart.id).order_by(CartItem.id)).scalars())


def _find_line(db: Session, cart: Cart, line_id: int) -> CartItem:
    line = db.execute(
        select(CartItem).where(CartItem.cart_id == cart.id, CartItem.id == line_id)
    ).scalars().first()
    if line is None:
        raise NotFoundError('Cart item not found')
    return line


def snapshot_product(line: CartItem, product: Product) -> None:
    line.unit_price = product.price
    line.stock = product.stock
    line.name = product.name
    line.sku = product.sku
    line.thumbnail_url = product.thumbnail_url


def add_item(db: Session, identity: Identity, product_id: Any, variant_selections: Optional[Mapping[str, Any]],
             quantity: Any) -> CartItem:
    identity = _require_identity(identity)
    quantity = _require_quantity(quantity)
    if isinstance(product_id, bool) or not isinstance(product_id, int):
        raise ValidationError('Product and quantity required', {'field': 'productId'})
    selections = normalize_variants(variant_selections)
    key = variant_key(selections)

    with transaction(db):
        product = catalog.get_product(db, product_id)
        if not catalog.is_available(product):
            raise ValidationError('Product not found or unavailable', {'productId': product_id})

        cart = get_or_create_cart(db, identity)
        now = now_utc()
        line = db.execute(
            select(CartItem).where(
                CartItem.cart_id == cart.id,
                CartItem.product_id == product_id,
                CartItem.variant_key == key,
            )
        ).scalars().first()

        new_quantity = quantity + (line.quantity if line else 0)
        if product.stock < new_quantity:
            available = product.stock - (line.quantity if line else 0)
            raise ValidationError(
                f'Insufficient stock. Only {max(available, 0)} available',
                {'productId': product_id, 'currentStock': product.stock},
            )

        if line is None:
            line = CartItem(
                cart_id=cart.id,
                product_id=product_id,
                variant_key=key,
                variant_selections=selections,
                quantity=quantity,
                selected=True,
                added_at=now,
            )
            db.add(line)
        else:
            line.quantity = new_quantity
        snapshot_product(line, product)
        line.updated_at = now
        cart.last_activity_at = now
        db.flush()

    logger.info('cart_item_added', cart_id=cart.id, product_id=product_id, quantity=line.quantity)
    return line


def update_quantity(db: Session, identity: Identity, line_id: int, quantity: Any) -> Optional[CartItem]:
    """Set a line's quantity; zero or less removes the line and returns None."""
    quantity = _require_quantity(quantity, allow_non_positive=True)
    if quantity <= 0:
        remove_item(db, identity, line_id)
        return None
    with transaction(db):
        cart = find_cart(db, identity, lock=True)
        if cart is None:
            raise NotFoundError('Cart not found')
        line = _find_line(db, cart, line_id)
        now = now_utc()
        line.quantity = quantity
        line.updated_at = now
        cart.last_activity_at = now
    return line


def set_selected(db: Session, identity: Identity, line_id: int, selected: bool) -> CartItem:
    with transaction(db):
        cart = find_cart(db, identity, lock=True)
        if cart is None:
            raise NotFoundError('Cart not found')
        line = _find_line(db, cart, line_id)
        line.selected = bool(selected)
        line.updated_at = now_utc()
    return line


def remove_item(db: Session, identity: Identity, line_id: int) -> None:
    with transaction(db):
        cart = find_cart(db, identity, lock=True)
        if cart is None:
            raise NotFoundError('Cart not found')
        line = _find_line(db, cart, line_id)
        db.delete(line)
        cart.last_activity_at = now_utc()
    logger.info('cart_item_removed', cart_id=cart.id, line_id=line_id)


def clear_lines(db: Session, cart: Cart) -> int:
    """Delete every line of ``cart`` inside the caller's transaction."""
    lines = db.execute(select(CartItem).where(CartItem.cart_id == cart.id)).scalars().all()
    for line in lines:
        db.delete(line)
    cart.last_activity_at = now_utc()
    return len(lines)


def clear_cart(db: Session, identity: Identity) -> None:
    with transaction(db):
        cart = find_cart(db, identity, lock=True)
        if cart is None:
            return
        removed = clear_lines(db, cart)
    logger.info('cart_cleared', cart_id=cart.id, removed=removed)
