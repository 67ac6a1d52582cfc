"""Order state machine: legal lifecycle moves and their side effects.

Each transition runs in one ``transaction.atomic()`` block that

1. loads the order with ``select_for_update()``,
2. checks the move against the table in ``domain.TRANSITIONS``,
3. writes the new status with a compare-and-set UPDATE whose WHERE clause
   repeats the status (and payment status) that was just checked, and
4. only when that UPDATE hit the row, runs the side effect (stock release,
   payment log) in the same transaction.

If a competing transaction (the expiry sweeper, a user cancel, another
admin) moved the order first, step 3 updates nothing and the side effect
is skipped, so stock is released and payments are logged at most once.
"""

import logging
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from apps.common.errors import Forbidden, InvalidOrderState, OrderNotFound
from apps.inventory.ledger import StockLedger
from apps.payments.models import PaymentLog
from .domain import (
    OrderEvent,
    OrderStatus,
    PaymentDetails,
    PaymentStatus,
    check_payment_confirmable,
    next_status,
    payment_status_after,
)
from .models import OrderModel

logger = logging.getLogger("orders")


def append_note(existing: str, at: datetime, line: str) -> str:
    """Append a timestamped audit line; admin notes are never rewritten."""
    entry = f"[{at.isoformat()}] {line}"
    return f"{existing}\n{entry}" if existing else entry


class OrderStateMachine:
    """Drives orders through the lifecycle; the only code that restores stock."""

    def __init__(self, ledger: StockLedger, clock: Callable[[], datetime] = timezone.now):
        self.ledger = ledger
        self.clock = clock

    # ---- transitions ----
    def confirm_payment(
        self,
        order_id: UUID | str,
        details: PaymentDetails,
        admin_id: int,
        note: Optional[str] = None,
    ) -> OrderModel:
        """PENDING -> PAID, writing the payment log in the same transaction.

        Raises:
            OrderNotFound: Unknown order.
            AlreadyPaid: The payment was already confirmed.
            InvalidOrderState: The order is not awaiting payment, or another
                transaction moved it concurrently.
        """
        with transaction.atomic():
            order = self._load_for_update(order_id)
            check_payment_confirmable(order.status, order.payment_status)
            applied = self._apply(
                order,
                OrderEvent.CONFIRM_PAYMENT,
                note or f"Payment confirmed by admin {admin_id}",
                paid_at=details.paid_at,
                payment_method=details.method.value,
                payment_id=details.payment_id,
            )
            if not applied:
                raise InvalidOrderState("order changed while confirming payment")
            PaymentLog.objects.create(
                order_id=order.pk,
                payment_method=details.method.value,
                amount=details.amount,
                payment_id=details.payment_id,
                paid_at=details.paid_at,
                payment_notes=details.payment_notes,
                transaction_reference=details.transaction_reference,
                bank_name=details.bank_name,
                account_last_four=details.account_last_four,
                admin_id=admin_id,
            )
        logger.info("order paid", extra={"order_number": order.order_number, "admin_id": admin_id})
        return self._hydrate(order.pk)

    def cancel(
        self,
        order_id: UUID | str,
        user_id: Optional[int] = None,
        reason: str = "Cancelled by customer",
    ) -> OrderModel:
        """PENDING -> CANCELLED and release every reserved line.

        Args:
            order_id: Order to cancel.
            user_id: When given, the order must belong to this user.
            reason: Audit text appended to the admin notes.

        Raises:
            OrderNotFound: Unknown order.
            Forbidden: ``user_id`` does not own the order.
            InvalidOrderState: The order is no longer PENDING (including a
                second cancel of the same order, or losing a race against the
                expiry sweeper).
        """
        with transaction.atomic():
            order = self._load_for_update(order_id)
            if user_id is not None and order.user_id != user_id:
                raise Forbidden("order belongs to another user")
            if order.is_terminal:
                raise InvalidOrderState(f"order is already {order.status}")
            if not self._apply(order, OrderEvent.CANCEL, reason, release=True, cancelled_at=self.clock()):
                raise InvalidOrderState("order changed while cancelling")
        logger.info("order cancelled", extra={"order_number": order.order_number, "user_id": user_id})
        return self._hydrate(order.pk)

    def expire(self, order_id: UUID | str, now: Optional[datetime] = None) -> bool:
        """Cancel an unpaid order whose payment deadline has passed.

        Unlike ``cancel`` this never raises for an order that is no longer
        eligible; it returns False so the sweeper can move on.

        Returns:
            True if this call cancelled the order and released its stock.
        """
        now = now or self.clock()
        with transaction.atomic():
            try:
                order = self._load_for_update(order_id)
            except OrderNotFound:
                return False
            if (
                order.status != OrderStatus.PENDING.value
                or order.payment_status != PaymentStatus.PENDING.value
                or order.payment_deadline >= now
            ):
                return False
            applied = self._apply(
                order,
                OrderEvent.EXPIRE,
                "Cancelled automatically: payment deadline passed",
                release=True,
                guard={"payment_deadline__lt": now},
                cancelled_at=now,
            )
        if applied:
            logger.info("order expired", extra={"order_number": order.order_number})
        return applied

    def ship(
        self,
        order_id: UUID | str,
        tracking_number: Optional[str] = None,
        shipping_method: Optional[str] = None,
    ) -> OrderModel:
        """PAID -> SHIPPED."""
        with transaction.atomic():
            order = self._load_for_update(order_id)
            fields = {"shipped_at": self.clock(), "tracking_number": tracking_number}
            if shipping_method:
                fields["shipping_method"] = shipping_method
            note = f"Shipped, tracking {tracking_number}" if tracking_number else "Shipped"
            if not self._apply(order, OrderEvent.SHIP, note, **fields):
                raise InvalidOrderState("order changed while shipping")
        logger.info("order shipped", extra={"order_number": order.order_number})
        return self._hydrate(order.pk)

    def deliver(self, order_id: UUID | str) -> OrderModel:
        """SHIPPED -> COMPLETED."""
        with transaction.atomic():
            order = self._load_for_update(order_id)
            if not self._apply(order, OrderEvent.DELIVER, "Delivery confirmed", delivered_at=self.clock()):
                raise InvalidOrderState("order changed while confirming delivery")
        logger.info("order completed", extra={"order_number": order.order_number})
        return self._hydrate(order.pk)

    def refund(self, order_id: UUID | str, admin_id: int, reason: Optional[str] = None) -> OrderModel:
        """Any non-terminal status -> REFUNDED, releasing stock still held."""
        with transaction.atomic():
            order = self._load_for_update(order_id)
            if order.is_terminal:
                raise InvalidOrderState(f"order is already {order.status}")
            note = f"Refunded by admin {admin_id}" + (f": {reason}" if reason else "")
            applied = self._apply(
                order,
                OrderEvent.REFUND,
                note,
                release=order.holds_reservation,
                refunded_at=self.clock(),
            )
            if not applied:
                raise InvalidOrderState("order changed while refunding")
        logger.info("order refunded", extra={"order_number": order.order_number, "admin_id": admin_id})
        return self._hydrate(order.pk)

    # ---- internals ----
    def _load_for_update(self, order_id) -> OrderModel:
        try:
            return OrderModel.objects.select_for_update().get(pk=order_id)
        except (OrderModel.DoesNotExist, ValidationError, ValueError):
            raise OrderNotFound(f"order {order_id} does not exist") from None

    def _hydrate(self, pk) -> OrderModel:
        return OrderModel.objects.prefetch_related("items").get(pk=pk)

    def _apply(
        self,
        order: OrderModel,
        event: OrderEvent,
        note: str,
        *,
        release: bool = False,
        guard: Optional[dict] = None,
        **fields,
    ) -> bool:
        """Compare-and-set the transition for ``event`` and run its side effect.

        Returns:
            False when the row no longer matches the status read earlier,
            in which case nothing was written.

        Raises:
            InvalidOrderState: ``event`` is not legal from the current status.
        """
        target = next_status(order.status, event)
        now = self.clock()

        filters = {"pk": order.pk, "status": order.status, "payment_status": order.payment_status}
        filters.update(guard or {})
        values = {
            "status": target.value,
            "payment_status": payment_status_after(event, order.payment_status).value,
            "admin_notes": append_note(order.admin_notes, now, note),
            "updated_at": now,
            **fields,
        }
        if release:
            filters["stock_released_at__isnull"] = True
            values["stock_released_at"] = now

        if OrderModel.objects.filter(**filters).update(**values) != 1:
            logger.info(
                "transition lost to a concurrent update",
                extra={"order_number": order.order_number, "event": event.value},
            )
            return False

        if release:
            self.ledger.release_many((item.product_id, item.quantity) for item in order.items.all())

        for name, value in values.items():
            setattr(order, name, value)
        return True
