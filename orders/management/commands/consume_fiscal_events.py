from django.core.management.base import BaseCommand
from orders.consumers.fiscal_events import run_consumer_once, start_fiscal_consumer


class Command(BaseCommand):
    help = 'Start Kafka consumer to listen for fiscal document events'

    def add_arguments(self, parser):
        parser.add_argument('--once', action='store_true', help='Process at most one event and exit')

    def handle(self, *args, **options):
        if options['once']:
            order = run_consumer_once()
            self.stdout.write(f"Processed: {order.pk if order else 'nothing'}")
            return
        self.stdout.write(self.style.SUCCESS('Starting fiscal document consumer...'))
        start_fiscal_consumer()
