import threading, json
from typing import Optional
from kafka import KafkaConsumer
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session
from storefront.core.config import settings
from storefront.core.errors import ValidationError
from storefront.db.session import SessionLocal, transaction
from storefront.db.models import Order, OrderStatus, PaymentStatus
from storefront.services import order_status

logger = structlog.get_logger(__name__)

_stop_event = threading.Event()
_thread = None

def _find_order(ev: dict, db: Session) -> Optional[Order]:
    if ev.get("order_id") is not None:
        try:
            order_id = int(ev["order_id"])
        except (TypeError, ValueError):
            return None
        return db.get(Order, order_id)
    if ev.get("order_number"):
        return db.execute(select(Order).where(Order.order_number == ev["order_number"])).scalars().first()
    return None

def _payment_succeeded(order: Order, ev: dict):
    order_status.apply_payment_status(order, PaymentStatus.PAID)
    if order.order_status == OrderStatus.PENDING.value:
        order_status.apply_order_status(order, OrderStatus.PROCESSING)

def _payment_failed(order: Order, ev: dict):
    order_status.apply_payment_status(order, PaymentStatus.FAILED)

def _payment_refunded(order: Order, ev: dict):
    order_status.apply_payment_status(order, PaymentStatus.REFUNDED)
    if not order_status.is_terminal(order.order_status):
        order_status.apply_order_status(order, OrderStatus.REFUNDED)

def _shipping_dispatched(order: Order, ev: dict):
    order_status.apply_order_status(order, OrderStatus.SHIPPED)
    order.carrier = ev.get("carrier") or order.carrier
    order.tracking_number = ev.get("tracking_number") or order.tracking_number

def _shipping_delivered(order: Order, ev: dict):
    order_status.apply_order_status(order, OrderStatus.DELIVERED)

def _order_cancelled(order: Order, ev: dict):
    order_status.apply_order_status(order, OrderStatus.CANCELLED)

HANDLERS = {
    "payment.succeeded": _payment_succeeded,
    "payment.failed": _payment_failed,
    "payment.refunded": _payment_refunded,
    "shipping.dispatched": _shipping_dispatched,
    "shipping.delivered": _shipping_delivered,
    "order.cancelled": _order_cancelled,
}

def process_event(ev: dict, db: Session) -> bool:
    """Apply one fulfillment/payment event; returns False when it was ignored."""
    handler = HANDLERS.get(ev.get("type"))
    if handler is None:
        return False
    try:
        with transaction(db):
            order = _find_order(ev, db)
            if order is None:
                logger.warning("event_order_missing", type=ev.get("type"), order_id=ev.get("order_id"))
                return False
            handler(order, ev)
    except ValidationError as exc:
        logger.warning("event_rejected", type=ev.get("type"), message=exc.message, details=exc.details)
        return False
    logger.info("order_event_applied", type=ev.get("type"), order_id=order.id,
                order_status=order.order_status, payment_status=order.payment_status)
    return True

def consume(messages, db: Session) -> int:
    """Apply each message in turn; a failing message is logged and skipped."""
    applied = 0
    for msg in messages:
        if _stop_event.is_set(): break
        try:
            if process_event(msg.value, db):
                applied += 1
        except Exception:
            logger.exception("event_failed", topic=getattr(msg, "topic", None), offset=getattr(msg, "offset", None))
    return applied

def run_loop():
    topics = [t.strip() for t in settings.FULFILLMENT_TOPICS.split(",") if t.strip()]
    consumer = KafkaConsumer(
        *topics,
        bootstrap_servers=[s.strip() for s in settings.KAFKA_BOOTSTRAP.split(",") if s.strip()],
        group_id="storefront",
        value_deserializer=lambda v: json.loads(v.decode("utf-8")),
        enable_auto_commit=True,
        auto_offset_reset="earliest",
    )
    db = SessionLocal()
    try:
        consume(consumer, db)
    finally:
        db.close()
        consumer.close()

def start():
    global _thread
    if not settings.KAFKA_BOOTSTRAP or not settings.KAFKA_CONSUMER_ENABLED: return
    if _thread and _thread.is_alive(): return
    _stop_event.clear()
    _thread = threading.Thread(target=run_loop, daemon=True)
    _thread.start()

def stop():
    _stop_event.set()
