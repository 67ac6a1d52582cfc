"""Read-side repository for orders.

Writes go through ``OrderBuilder`` and ``OrderStateMachine``; this module
only answers queries: fetching one order with an ownership check, paged
listings, per-status statistics and the payment countdown of an order.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from django.core.exceptions import ValidationError
from django.core.paginator import Paginator
from django.db.models import Count, Q, Sum
from django.utils import timezone

from apps.common.errors import Forbidden, OrderNotFound
from .domain import OrderStatus
from .models import OrderModel
from .schemas import OrderQueryDTO, PaymentStatusReadDTO

CENTS = Decimal("0.01")


class OrderRepository:
    """Query helpers returning ORM objects or small DTOs."""

    def get(self, order_id: UUID | str, owner_user_id: Optional[int] = None) -> OrderModel:
        """Fetch an order with its items.

        Args:
            order_id: Order primary key.
            owner_user_id: When given, the order must belong to this user.

        Raises:
            OrderNotFound: No order with this id.
            Forbidden: The order belongs to another user.
        """
        try:
            order = OrderModel.objects.prefetch_related("items").get(pk=order_id)
        except (OrderModel.DoesNotExist, ValidationError, ValueError):
            raise OrderNotFound(f"order {order_id} does not exist") from None
        if owner_user_id is not None and order.user_id != owner_user_id:
            raise Forbidden("order belongs to another user")
        return order

    def list(self, query: OrderQueryDTO):
        """Return a Django ``Page`` of orders matching ``query``."""
        qs = OrderModel.objects.prefetch_related("items").order_by("-created_at")
        if query.user_id is not None:
            qs = qs.filter(user_id=query.user_id)
        if query.status is not None:
            qs = qs.filter(status=query.status.value)
        if query.payment_status is not None:
            qs = qs.filter(payment_status=query.payment_status.value)
        if query.order_number:
            qs = qs.filter(order_number__contains=query.order_number)
        if query.start_date:
            qs = qs.filter(created_at__gte=query.start_date)
        if query.end_date:
            qs = qs.filter(created_at__lte=query.end_date)
        return Paginator(qs, query.page_size).get_page(query.page)

    def stats(self, user_id: Optional[int] = None) -> dict:
        qs = OrderModel.objects.all()
        if user_id is not None:
            qs = qs.filter(user_id=user_id)
        counts = {
            f"{status.value.lower()}_orders": Count("id", filter=Q(status=status.value)) for status in OrderStatus
        }
        agg = qs.aggregate(total_orders=Count("id"), total_amount=Sum("total_amount"), **counts)
        # SQLite sums decimals without their scale
        agg["total_amount"] = str((agg["total_amount"] or Decimal("0")).quantize(CENTS))
        return agg

    def payment_status(self, order: OrderModel, now: Optional[datetime] = None) -> PaymentStatusReadDTO:
        now = now or timezone.now()
        remaining = max(0, int((order.payment_deadline - now).total_seconds()))
        return PaymentStatusReadDTO(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
            payment_deadline=order.payment_deadline,
            is_expired=order.payment_deadline < now,
            remaining_seconds=remaining,
            remaining_minutes=remaining // 60,
        )
