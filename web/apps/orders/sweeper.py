"""Expiry sweeper: cancels unpaid orders whose payment deadline has passed.

``ExpirySweeper.sweep`` is the single code path behind both the recurring
run (``SweepTicker``, started by ``manage.py run_expiry_sweeper``) and the
admin's manual trigger endpoint. Each candidate order is expired in its
own transaction by the state machine, so one failure never blocks the
rest of the batch and row locks are held for one order at a time.
"""

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Optional

from django.conf import settings
from django.db import DatabaseError, close_old_connections
from django.utils import timezone

from apps.common.errors import DomainError
from .domain import OrderStatus, PaymentStatus
from .models import OrderModel
from .state_machine import OrderStateMachine

logger = logging.getLogger("orders.sweeper")


@dataclass
class SweepReport:
    """Outcome counters of one sweep run."""

    started_at: datetime
    scanned: int = 0
    cancelled: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data


# Last completed report, surfaced by the health endpoint.
_last_report: Optional[SweepReport] = None
_last_report_lock = threading.Lock()


def last_report() -> Optional[SweepReport]:
    with _last_report_lock:
        return _last_report


def _remember(report: SweepReport) -> None:
    global _last_report
    with _last_report_lock:
        _last_report = report


class ExpirySweeper:
    """Finds PENDING orders past their deadline and expires them one by one."""

    def __init__(
        self,
        state_machine: OrderStateMachine,
        clock: Callable[[], datetime] = timezone.now,
        batch_size: Optional[int] = None,
    ):
        self.state_machine = state_machine
        self.clock = clock
        self.batch_size = batch_size or getattr(settings, "ORDER_SWEEP_BATCH_SIZE", 500)

    def candidates(self, now: datetime) -> list:
        """Ids of unpaid PENDING orders whose deadline is strictly before ``now``."""
        qs = (
            OrderModel.objects.filter(
                status=OrderStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                payment_deadline__lt=now,
            )
            .order_by("payment_deadline")
            .values_list("pk", flat=True)
        )
        return list(qs[: self.batch_size])

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Run one sweep.

        Orders another transaction already moved out of PENDING count as
        skipped. Any other error on a single order is logged and counted as
        failed; the sweep carries on with the next candidate.

        Args:
            now: Reference time; defaults to the sweeper's clock.

        Returns:
            SweepReport with the counters of this run.
        """
        now = now or self.clock()
        report = SweepReport(started_at=now)

        order_ids = self.candidates(now)
        report.scanned = len(order_ids)
        if not order_ids:
            logger.info("no expired orders found")
            _remember(report)
            return report

        logger.info("expired orders found", extra={"count": report.scanned})
        for order_id in order_ids:
            try:
                if self.state_machine.expire(order_id, now=now):
                    report.cancelled += 1
                else:
                    report.skipped += 1
            except DomainError as e:
                report.skipped += 1
                logger.warning("expired order skipped", extra={"order_id": str(order_id), "detail": str(e)})
            except Exception:
                report.failed += 1
                logger.exception("failed to expire order", extra={"order_id": str(order_id)})

        logger.info("expiry sweep finished", extra=report.as_dict())
        _remember(report)
        return report


class SweepTicker:
    """Runs ``sweeper.sweep`` every ``interval`` seconds on a daemon thread.

    ``stop()`` wakes the thread and waits for the run in progress to end.
    """

    def __init__(self, sweeper: ExpirySweeper, interval: Optional[float] = None):
        self.sweeper = sweeper
        self.interval = interval or getattr(settings, "ORDER_SWEEP_INTERVAL_SECONDS", 60)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="expiry-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run_forever(self) -> None:
        logger.info("expiry sweeper started", extra={"interval_seconds": self.interval})
        while not self.stopped:
            self.tick()
            # The thread owns its connection; drop it if it went stale between runs.
            close_old_connections()
            self._stop.wait(self.interval)
        logger.info("expiry sweeper stopped")

    def tick(self) -> Optional[SweepReport]:
        """One scheduled run; errors are logged so the loop keeps ticking."""
        try:
            return self.sweeper.sweep()
        except DatabaseError:
            logger.exception("expiry sweep aborted")
            return None
