"""Read-only order projections for the signed-in shopper."""
import json
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.db.models import Order, OrderItem


def list_user_orders(db: Session, user_id: int) -> List[Order]:
    return list(db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
    ).scalars())


def _iso(value):
    return value.isoformat() if value else None


def item_to_dict(item: OrderItem) -> dict:
    return {
        'id': item.id,
        'productId': item.product_id,
        'productName': item.product_name,
        'productSku': item.product_sku,
        'imageUrl': item.image_url,
        'quantity': item.quantity,
        'unitPrice': item.unit_price,
        'subtotal': item.subtotal,
    }


def order_to_dict(order: Order) -> dict:
    return {
        'id': order.id,
        'orderNumber': order.order_number,
        'orderStatus': order.order_status,
        'paymentStatus': order.payment_status,
        'customerName': order.customer_name,
        'customerEmail': order.customer_email,
        'customerPhone': order.customer_phone,
        'shippingAddress': json.loads(order.shipping_address) if order.shipping_address else None,
        'subtotal': order.subtotal,
        'shippingCost': order.shipping_cost,
        'total': order.total,
        'currency': order.currency,
        'carrier': order.carrier,
        'trackingNumber': order.tracking_number,
        'createdAt': _iso(order.created_at),
        'paidAt': _iso(order.paid_at),
        'shippedAt': _iso(order.shipped_at),
        'deliveredAt': _iso(order.delivered_at),
        'items': [item_to_dict(it) for it in order.items],
    }
