"""Turn a validated cart into an order.

Both entry points lock the cart, re-validate it against live products, then
write the order, its items and the address snapshot and clear the cart in a
single transaction. Expected failures (empty or stale cart, unknown address,
an email that already has an account) come back as a failed ``Result``;
database faults are raised as ``DatabaseError`` after the rollback.
"""
import json
import secrets
import string
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import AppError, ConflictError, DatabaseError, NotFoundError, ValidationError
from storefront.core.identity import GuestIdentity, Identity, UserIdentity
from storefront.core.results import Result
from storefront.db.models import Address, Cart, CartItem, Order, OrderItem, User
from storefront.db.session import transaction
from storefront.kafka import producer
from storefront.security.utils import generate_secure_password, hash_password, now_utc
from storefront.services import address_manager, cart_validator
from storefront.services.cart_validator import ValidationReport
from storefront.store import cart_store

logger = structlog.get_logger(__name__)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
ORDER_NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class GuestContact:
    full_name: str
    email: str
    phone: str


@dataclass(frozen=True)
class CheckoutReceipt:
    order_id: int
    order_number: str
    total: int
    user_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {'orderId': self.order_id, 'orderNumber': self.order_number}


def generate_order_number(today: Optional[date] = None) -> str:
    today = today or now_utc().date()
    suffix = ''.join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(5))
    return f'ORD-{today:%Y%m%d}-{suffix}'


def _unique_order_number(db: Session) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number()
        taken = db.execute(select(func.count()).select_from(Order).where(Order.order_number == candidate)).scalar()
        if not taken:
            return candidate
        logger.warning('order_number_collision', order_number=candidate)
    raise DatabaseError('Could not allocate an order number')


def compute_totals(lines: List[CartItem]) -> Tuple[int, int, int]:
    subtotal = sum(line.unit_price * line.quantity for line in lines)
    shipping = settings.SHIPPING_FLAT_RATE
    return subtotal, shipping, subtotal + shipping


def snapshot_line(line: CartItem) -> OrderItem:
    return OrderItem(
        product_id=line.product_id,
        product_name=line.name,
        product_sku=line.sku,
        image_url=line.thumbnail_url,
        quantity=line.quantity,
        unit_price=line.unit_price,
        subtotal=line.unit_price * line.quantity,
    )


def snapshot_address(address: Address) -> str:
    return json.dumps({
        'label': address.label,
        'recipientName': address.recipient_name,
        'phoneNumber': address.phone_number,
        'streetAddress': address.street_address,
        'addressLine2': address.address_line2,
        'village': address.village,
        'district': address.district,
        'city': address.city,
        'state': address.state,
        'postalCode': address.postal_code,
        'country': address.country,
    })


def invalid_cart_error(report: ValidationReport) -> ValidationError:
    messages = ', '.join(issue.message for issue in report.errors)
    return ValidationError(
        f'Cart validation failed: {messages}',
        {'errors': [issue.to_dict() for issue in report.errors]},
    )


def _locked_cart_lines(db: Session, identity: Identity) -> Tuple[Cart, List[CartItem]]:
    cart = cart_store.find_cart(db, identity, lock=True)
    lines = [] if cart is None else list(db.execute(
        select(CartItem).where(CartItem.cart_id == cart.id).order_by(CartItem.id)
    ).scalars())
    if not lines:
        raise ValidationError('Cart is empty')
    report = cart_validator.validate(db, lines)
    if not report.valid:
        raise invalid_cart_error(report)
    return cart, lines


def _place_order(db: Session, lines: List[CartItem], customer: Dict[str, Any], address: Address) -> Order:
    subtotal, shipping, total = compute_totals(lines)
    shipping_address = snapshot_address(address)
    order = Order(
        order_number=_unique_order_number(db),
        user_id=customer['user_id'],
        customer_name=customer['name'],
        customer_email=customer['email'],
        customer_phone=customer.get('phone'),
        shipping_address=shipping_address,
        billing_address=shipping_address,
        subtotal=subtotal,
        shipping_cost=shipping,
        total=total,
        currency=settings.CURRENCY,
    )
    order.items = [snapshot_line(line) for line in lines]
    db.add(order)
    db.flush()
    return order


def _run(db: Session, op: str, place) -> Result[CheckoutReceipt]:
    try:
        with transaction(db):
            order = place()
            receipt = CheckoutReceipt(order_id=order.id, order_number=order.order_number,
                                      total=order.total, user_id=order.user_id)
            items = [(it.product_id, it.quantity, it.unit_price) for it in order.items]
    except AppError as exc:
        if isinstance(exc, DatabaseError):
            raise
        logger.info('checkout_rejected', op=op, error_type=exc.type, message=exc.message)
        return Result.failure(exc)
    except SQLAlchemyError as exc:
        logger.error('checkout_failed', op=op, error=str(exc))
        raise DatabaseError('Failed to create order') from exc

    logger.info('order_created', op=op, order_id=receipt.order_id, order_number=receipt.order_number,
                total=receipt.total)
    producer.publish_order_created(receipt, items)
    return Result.success(receipt)


def checkout_authenticated(db: Session, user_id: int, address_id: int) -> Result[CheckoutReceipt]:
    """Place an order from ``user_id``'s cart, shipping to one of their own addresses."""
    identity = UserIdentity(user_id)

    def place() -> Order:
        cart, lines = _locked_cart_lines(db, identity)
        address = address_manager.get_address(db, address_id, user_id)
        if address is None:
            raise NotFoundError('Address not found')
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError('User not found')
        order = _place_order(db, lines, {
            'user_id': user.id,
            'name': user.name,
            'email': user.email,
            'phone': user.phone or address.phone_number,
        }, address)
        cart_store.clear_lines(db, cart)
        return order

    return _run(db, 'authenticated', place)


def checkout_guest(db: Session, contact: GuestContact, address_fields: Mapping[str, Any],
                   session_id: Optional[str]) -> Result[CheckoutReceipt]:
    """Place an order from a session cart, registering the shopper as a new user.

    An email that already belongs to an account is rejected before any write.
    """
    if not session_id:
        return Result.failure(ValidationError('Session not found'))
    if not cart_store.has_cart(db, session_id):
        return Result.failure(ValidationError('No cart found for this session'))
    error = address_manager.validate_fields(address_fields)
    if error is not None:
        return Result.failure(error)
    email = contact.email.strip().lower()

    def place() -> Order:
        cart, lines = _locked_cart_lines(db, GuestIdentity(session_id))
        exists = db.execute(select(User.id).where(func.lower(User.email) == email)).first()
        if exists is not None:
            raise ConflictError('An account with this email already exists, please sign in',
                                {'field': 'email'})
        user = User(
            name=contact.full_name,
            email=email,
            phone=contact.phone,
            password_hash=hash_password(generate_secure_password()),
            role='user',
        )
        db.add(user)
        db.flush()
        address = Address(user_id=user.id, is_default=True)
        for name in address_manager.EDITABLE_FIELDS:
            if address_fields.get(name) is not None:
                setattr(address, name, address_fields[name])
        if not address.country:
            address.country = address_manager.DEFAULT_COUNTRY
        db.add(address)
        db.flush()
        order = _place_order(db, lines, {
            'user_id': user.id,
            'name': contact.full_name,
            'email': email,
            'phone': contact.phone,
        }, address)
        cart_store.clear_lines(db, cart)
        logger.info('guest_registered', user_id=user.id)
        return order

    return _run(db, 'guest', place)
