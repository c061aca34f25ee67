import logging
import time

from django.conf import settings
from django.core.management.base import BaseCommand

from orders.services.transitions import sweep_pending_confirmations

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Auto-confirm reported deliveries whose confirmation window has expired'

    def add_arguments(self, parser):
        parser.add_argument('--loop', action='store_true', help='Keep sweeping every SWEEP_INTERVAL_SECONDS')
        parser.add_argument('--interval', type=int, default=None, help='Override the sweep interval in seconds')

    def handle(self, *args, **options):
        interval = options['interval'] or settings.SWEEP_INTERVAL_SECONDS
        if not options['loop']:
            self._sweep()
            return

        self.stdout.write(self.style.SUCCESS(f'Sweeping delivery confirmations every {interval}s...'))
        try:
            while True:
                self._sweep()
                time.sleep(interval)
        except KeyboardInterrupt:
            logger.info("Delivery confirmation sweep stopped")

    def _sweep(self):
        confirmed = sweep_pending_confirmations()
        self.stdout.write(self.style.SUCCESS(f'Confirmed {len(confirmed)} order(s)'))
