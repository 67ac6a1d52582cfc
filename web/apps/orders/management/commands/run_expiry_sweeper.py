"""``manage.py run_expiry_sweeper``: cancel unpaid orders past their deadline.

Runs a sweep every ``ORDER_SWEEP_INTERVAL_SECONDS`` until SIGTERM/SIGINT,
or a single sweep with ``--once`` (for cron-style scheduling).
"""

import signal

from django.core.management.base import BaseCommand

from apps.orders.providers import get_expiry_sweeper
from apps.orders.sweeper import SweepTicker


class Command(BaseCommand):
    help = "Cancel PENDING orders whose payment deadline has passed and release their stock."

    def add_arguments(self, parser):
        parser.add_argument("--once", action="store_true", help="Run a single sweep and exit.")
        parser.add_argument("--interval", type=float, default=None, help="Seconds between sweeps.")

    def handle(self, *args, **options):
        sweeper = get_expiry_sweeper()

        if options["once"]:
            report = sweeper.sweep()
            self.stdout.write(
                f"scanned={report.scanned} cancelled={report.cancelled} "
                f"skipped={report.skipped} failed={report.failed}"
            )
            return

        ticker = SweepTicker(sweeper, interval=options["interval"])

        def _shutdown(signum, _frame):
            self.stdout.write(f"signal {signum} received, stopping expiry sweeper")
            ticker.stop()

        signal.signal(signal.SIGTERM, _shutdown)
        signal.signal(signal.SIGINT, _shutdown)

        self.stdout.write(f"expiry sweeper running every {ticker.interval}s")
        try:
            ticker.run_forever()
        except KeyboardInterrupt:
            ticker.stop()
