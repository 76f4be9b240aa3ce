from kafka import KafkaProducer
from kafka.errors import KafkaError
import json
import structlog
from storefront.core.config import settings

logger = structlog.get_logger(__name__)

_producer = None

def enabled() -> bool:
    return bool(settings.KAFKA_BOOTSTRAP)

def get_producer():
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[s.strip() for s in settings.KAFKA_BOOTSTRAP.split(",") if s.strip()],
            value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

def send(topic: str, key: str, value: dict) -> bool:
    """Best-effort publish; the caller's transaction has already committed."""
    if not enabled():
        return False
    try:
        p = get_producer()
        p.send(topic, key=key, value=value)
        p.flush(5)
    except KafkaError as exc:
        logger.warning("event_publish_failed", topic=topic, key=key, error=str(exc))
        return False
    return True

def publish_order_created(receipt, items) -> bool:
    return send(
        topic=settings.ORDER_EVENTS_TOPIC,
        key=receipt.order_number,
        value={
            "type": "order.created",
            "order_id": receipt.order_id,
            "order_number": receipt.order_number,
            "user_id": receipt.user_id,
            "amount": receipt.total,
            "currency": settings.CURRENCY,
            "items": [
                {"product_id": product_id, "qty": qty, "unit_price": unit_price}
                for product_id, qty, unit_price in items
            ],
        },
    )
