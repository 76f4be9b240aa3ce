"""Allowed order and payment status transitions.

Fulfillment and payment collaborators drive these after an order exists; this
module only decides whether a requested move is legal and stamps the
matching timestamp.
"""
from typing import Dict, FrozenSet

from storefront.core.errors import ValidationError
from storefront.db.models import Order, OrderStatus, PaymentStatus
from storefront.security.utils import now_utc

_TERMINAL = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED})

_ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

_PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus(status) in _TERMINAL


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in _ORDER_TRANSITIONS[OrderStatus(current)]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return PaymentStatus(target) in _PAYMENT_TRANSITIONS[PaymentStatus(current)]


def apply_order_status(order: Order, target: OrderStatus) -> Order:
    target = OrderStatus(target)
    current = OrderStatus(order.order_status)
    if not can_transition(current, target):
        raise ValidationError(
            f'Cannot move order from {current.value} to {target.value}',
            {'orderNumber': order.order_number, 'from': current.value, 'to': target.value},
        )
    now = now_utc()
    order.order_status = target.value
    order.updated_at = now
    if target is OrderStatus.SHIPPED:
        order.shipped_at = now
    elif target is OrderStatus.DELIVERED:
        order.delivered_at = now
    return order


def apply_payment_status(order: Order, target: PaymentStatus) -> Order:
    target = PaymentStatus(target)
    current = PaymentStatus(order.payment_status)
    if not can_transition_payment(current, target):
        raise ValidationError(
            f'Cannot move payment from {current.value} to {target.value}',
            {'orderNumber': order.order_number, 'from': current.value, 'to': target.value},
        )
    now = now_utc()
    order.payment_status = target.value
    order.updated_at = now
    if target is PaymentStatus.PAID:
        order.paid_at = now
    return order
