"""Read-side queries over the payment log."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.db.models import Count, Sum
from django.utils import timezone

from apps.common.errors import PaymentLogNotFound
from apps.orders.domain import PaymentMethod, PaymentStatus
from apps.orders.models import OrderModel
from .models import PaymentLog
from .schemas import PaymentLogDetailDTO, PaymentStatsDTO, PaymentTotalsDTO

CENTS = Decimal("0.01")


def _money(value) -> Decimal:
    return (value or Decimal("0")).quantize(CENTS)


class PaymentLogRepository:
    def get(self, log_id: int) -> PaymentLogDetailDTO:
        """Fetch one payment log entry with a summary of its order.

        Raises:
            PaymentLogNotFound: No entry with this id.
        """
        log = PaymentLog.objects.select_related("order").filter(pk=log_id).first()
        if log is None:
            raise PaymentLogNotFound(f"payment log {log_id} does not exist")
        return PaymentLogDetailDTO.model_validate(log)

    def stats(self, now: Optional[datetime] = None) -> PaymentStatsDTO:
        """Aggregate the payment log.

        "Today" and "this month" start at local midnight in ``TIME_ZONE`` and
        are matched against ``paid_at``. Every payment method and payment
        status is present in the breakdowns, with zero totals when unused.
        """
        local_now = timezone.localtime(now or timezone.now())
        today_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        month_start = today_start.replace(day=1)

        totals = PaymentLog.objects.aggregate(count=Count("id"), amount=Sum("amount"))
        today = PaymentLog.objects.filter(paid_at__gte=today_start).aggregate(count=Count("id"), amount=Sum("amount"))
        month = PaymentLog.objects.filter(paid_at__gte=month_start).aggregate(count=Count("id"), amount=Sum("amount"))

        by_method = {m.value: PaymentTotalsDTO() for m in PaymentMethod}
        rows = PaymentLog.objects.order_by().values("payment_method").annotate(count=Count("id"), amount=Sum("amount"))
        for row in rows:
            by_method[row["payment_method"]] = PaymentTotalsDTO(count=row["count"], amount=_money(row["amount"]))

        by_status = {s.value: PaymentTotalsDTO() for s in PaymentStatus}
        rows = (
            OrderModel.objects.exclude(payment_status=PaymentStatus.PENDING.value)
            .order_by()
            .values("payment_status")
            .annotate(count=Count("id"), amount=Sum("total_amount"))
        )
        for row in rows:
            by_status[row["payment_status"]] = PaymentTotalsDTO(count=row["count"], amount=_money(row["amount"]))

        return PaymentStatsDTO(
            total_payments=totals["count"],
            total_amount=_money(totals["amount"]),
            today_payments=today["count"],
            today_amount=_money(today["amount"]),
            month_payments=month["count"],
            month_amount=_money(month["amount"]),
            by_payment_method=by_method,
            by_payment_status=by_status,
        )
