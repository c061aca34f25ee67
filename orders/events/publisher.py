"""
Publishes capacity changes to Kafka for the discovery/matching service.

Events are sent only after the reserving or releasing transaction commits,
so consumers never see a slot count that was rolled back.
"""
import json
import logging

from confluent_kafka import KafkaException, Producer
from django.conf import settings
from django.dispatch import receiver
from django.utils import timezone

from orders.signals import capacity_changed

logger = logging.getLogger(__name__)

_producer = None


def create_kafka_producer():
    return Producer({
        'bootstrap.servers': settings.KAFKA_BROKER_URL,
        'client.id': 'freight-core-capacity',
    })


def get_producer():
    global _producer
    if _producer is None:
        _producer = create_kafka_producer()
    return _producer


def _delivery_report(err, msg):
    if err is not None:
        logger.error(f"Capacity event delivery failed: {err}")
    else:
        logger.debug(f"Capacity event delivered to {msg.topic()} [{msg.partition()}]")


def build_capacity_event(order_id, accepted_slots, required_slots, status, reason):
    return {
        'event': 'capacity_changed',
        'order_id': str(order_id),
        'accepted_slots': accepted_slots,
        'required_slots': required_slots,
        'available_slots': max(required_slots - accepted_slots, 0),
        'status': str(status),
        'reason': reason,
        'occurred_at': timezone.now().isoformat(),
    }


def publish_capacity_changed(event):
    producer = get_producer()
    try:
        producer.produce(
            settings.CAPACITY_EVENTS_TOPIC,
            key=event['order_id'].encode('utf-8'),
            value=json.dumps(event).encode('utf-8'),
            callback=_delivery_report,
        )
        producer.poll(0)
    except (KafkaException, BufferError) as e:
        # The matching feed re-syncs from the API; losing one event is recoverable
        logger.error(f"Could not publish capacity event for order {event['order_id']}: {e}")


@receiver(capacity_changed)
def on_capacity_changed(sender, order_id, accepted_slots, required_slots, status, reason, **kwargs):
    if not settings.PUBLISH_CAPACITY_EVENTS:
        return
    publish_capacity_changed(build_capacity_event(order_id, accepted_slots, required_slots, status, reason))
