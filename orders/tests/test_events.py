import json
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings

from assignment.services.capacity_ledger import reserve_slot
from orders.consumers import fiscal_events
from orders.events import publisher
from orders.models import Order
from orders.signals import capacity_changed
from workflow.core.statuses import OrderStatus, PricingMode


class CapacityEventTests(SimpleTestCase):
    def test_build_capacity_event(self):
        event = publisher.build_capacity_event(7, 2, 3, OrderStatus.OPEN, 'reserved')
        self.assertEqual(event['event'], 'capacity_changed')
        self.assertEqual(event['order_id'], '7')
        self.assertEqual(event['available_slots'], 1)
        self.assertEqual(event['status'], 'OPEN')
        self.assertEqual(event['reason'], 'reserved')
        self.assertIn('occurred_at', event)

    @override_settings(PUBLISH_CAPACITY_EVENTS=True, CAPACITY_EVENTS_TOPIC='orders.capacity_changed')
    @mock.patch('orders.events.publisher.get_producer')
    def test_signal_publishes_to_kafka(self, mock_get_producer):
        producer = mock_get_producer.return_value

        capacity_changed.send(
            sender=Order, order_id=5, accepted_slots=1, required_slots=1,
            status=OrderStatus.ACCEPTED, reason='reserved',
        )

        producer.produce.assert_called_once()
        args, kwargs = producer.produce.call_args
        self.assertEqual(args[0], 'orders.capacity_changed')
        self.assertEqual(kwargs['key'], b'5')
        payload = json.loads(kwargs['value'].decode('utf-8'))
        self.assertEqual(payload['status'], 'ACCEPTED')
        self.assertEqual(payload['available_slots'], 0)
        producer.poll.assert_called_once_with(0)

    @override_settings(PUBLISH_CAPACITY_EVENTS=False)
    @mock.patch('orders.events.publisher.get_producer')
    def test_publishing_disabled(self, mock_get_producer):
        capacity_changed.send(
            sender=Order, order_id=5, accepted_slots=1, required_slots=1,
            status=OrderStatus.ACCEPTED, reason='reserved',
        )
        mock_get_producer.assert_not_called()

    @mock.patch('orders.events.publisher.get_producer')
    def test_full_producer_queue_does_not_propagate(self, mock_get_producer):
        mock_get_producer.return_value.produce.side_effect = BufferError('Local: Queue full')
        event = publisher.build_capacity_event(5, 1, 2, OrderStatus.OPEN, 'released')

        publisher.publish_capacity_changed(event)

        mock_get_producer.return_value.poll.assert_not_called()


class CapacityEventOnCommitTests(TestCase):
    @override_settings(PUBLISH_CAPACITY_EVENTS=True)
    @mock.patch('orders.events.publisher.get_producer')
    def test_reservation_publishes_after_commit(self, mock_get_producer):
        order = Order.objects.create(
            requester_id='req-1', required_slots=2,
            pricing_mode=PricingMode.FIXED, fixed_amount=Decimal('500'),
        )

        with self.captureOnCommitCallbacks(execute=True):
            reserve_slot(order.pk, 'f1')
            mock_get_producer.return_value.produce.assert_not_called()

        mock_get_producer.return_value.produce.assert_called_once()
        payload = json.loads(mock_get_producer.return_value.produce.call_args.kwargs['value'])
        self.assertEqual(payload['accepted_slots'], 1)
        self.assertEqual(payload['available_slots'], 1)


class FiscalEventTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(requester_id='req-1', cargo_type='live_cattle')

    def test_flags_are_merged(self):
        self.order.fiscal_documents = {'invoice': True}
        self.order.save()

        updated = fiscal_events.handle_fiscal_event({
            'order_id': self.order.pk,
            'documents': {' Animal_Transit_Permit ': 1, 'cargo_manifest': False},
        })

        self.assertEqual(updated.fiscal_documents, {
            'invoice': True,
            'animal_transit_permit': True,
            'cargo_manifest': False,
        })

    def test_flags_never_move_the_order(self):
        fiscal_events.handle_fiscal_event({'order_id': self.order.pk, 'documents': {'invoice': True}})
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.OPEN)

    def test_malformed_events_are_dropped(self):
        for event in (None, [], {'order_id': self.order.pk}, {'documents': {'invoice': True}},
                      {'order_id': self.order.pk, 'documents': ['invoice']}):
            with self.subTest(event=event):
                self.assertIsNone(fiscal_events.handle_fiscal_event(event))

    def test_unknown_order(self):
        self.assertIsNone(fiscal_events.handle_fiscal_event({'order_id': 999999, 'documents': {'invoice': True}}))

    @mock.patch('orders.consumers.fiscal_events.create_kafka_consumer')
    def test_run_consumer_once(self, mock_create_consumer):
        msg = mock.Mock()
        msg.error.return_value = None
        msg.value.return_value = json.dumps({
            'order_id': self.order.pk,
            'documents': {'invoice': True},
        }).encode('utf-8')
        consumer = mock_create_consumer.return_value
        consumer.poll.return_value = msg

        order = fiscal_events.run_consumer_once()

        consumer.subscribe.assert_called_once_with(['fiscal.documents'])
        consumer.close.assert_called_once()
        self.assertEqual(order.fiscal_documents, {'invoice': True})

    @mock.patch('orders.consumers.fiscal_events.create_kafka_consumer')
    def test_undecodable_message_is_dropped(self, mock_create_consumer):
        msg = mock.Mock()
        msg.error.return_value = None
        msg.value.return_value = b'\xff not json'
        mock_create_consumer.return_value.poll.return_value = msg

        self.assertIsNone(fiscal_events.run_consumer_once())
        self.order.refresh_from_db()
        self.assertEqual(self.order.fiscal_documents, {})


class ConsumeFiscalEventsCommandTests(TestCase):
    @mock.patch('orders.management.commands.consume_fiscal_events.run_consumer_once', return_value=None)
    def test_once_with_empty_topic(self, mock_run_once):
        out = StringIO()
        call_command('consume_fiscal_events', '--once', stdout=out)
        mock_run_once.assert_called_once()
        self.assertIn('Processed: nothing', out.getvalue())

    @mock.patch('orders.management.commands.consume_fiscal_events.start_fiscal_consumer')
    def test_long_running_consumer(self, mock_start):
        out = StringIO()
        call_command('consume_fiscal_events', stdout=out)
        mock_start.assert_called_once()
