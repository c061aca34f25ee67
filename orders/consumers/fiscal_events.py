import json
import logging

from confluent_kafka import Consumer, KafkaException
from django.conf import settings
from django.db import transaction

from orders.models import Order

logger = logging.getLogger(__name__)


def create_kafka_consumer():
    return Consumer({
        'bootstrap.servers': settings.KAFKA_BROKER_URL,
        'group.id': settings.FISCAL_CONSUMER_GROUP,
        'auto.offset.reset': 'earliest',
    })


def handle_fiscal_event(event):
    """
    Merge fiscal document presence flags into an order.

    Expected payload: ``{"order_id": 12, "documents": {"invoice": true}}``.
    Flags are metadata only; they never move the order.
    """
    if not isinstance(event, dict):
        logger.error("Invalid fiscal event payload: not an object")
        return None

    order_id = event.get("order_id")
    documents = event.get("documents")

    if not order_id or not isinstance(documents, dict):
        logger.error("Invalid fiscal event payload: missing order_id or documents")
        return None

    flags = {str(name).strip().lower(): bool(present) for name, present in documents.items() if name}

    with transaction.atomic():
        order = Order.objects.select_for_update().filter(pk=order_id).first()
        if order is None:
            logger.warning(f"Fiscal event for unknown order {order_id} dropped")
            return None
        merged = dict(order.fiscal_documents or {})
        merged.update(flags)
        order.fiscal_documents = merged
        order.save(update_fields=['fiscal_documents', 'updated_at'])

    logger.info(f"Fiscal documents updated for order {order_id}: {sorted(flags)}")
    return order


def _decode(msg):
    try:
        return json.loads(msg.value().decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Undecodable fiscal event dropped: {e}")
        return None


def start_fiscal_consumer():
    consumer = create_kafka_consumer()
    consumer.subscribe([settings.FISCAL_EVENTS_TOPIC])

    try:
        while True:
            msg = consumer.poll(1.0)
            if msg is None:
                continue
            if msg.error():
                raise KafkaException(msg.error())

            event = _decode(msg)
            if event is not None:
                handle_fiscal_event(event)
    except KeyboardInterrupt:
        logger.info("Fiscal document consumer stopped")
    finally:
        consumer.close()


def run_consumer_once():
    consumer = create_kafka_consumer()
    consumer.subscribe([settings.FISCAL_EVENTS_TOPIC])
    msg = consumer.poll(timeout=5.0)
    order = None
    if msg and not msg.error():
        event = _decode(msg)
        if event is not None:
            order = handle_fiscal_event(event)
    consumer.close()
    return order
