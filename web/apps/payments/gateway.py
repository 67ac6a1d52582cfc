"""Payment confirmation gateway for offline payments entered by an admin.

Validates the order and the amount, then asks the order state machine to
perform the PENDING -> PAID transition, which writes the payment log row
and the audit note in the same transaction.
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction

from apps.common.errors import AmountMismatch, OrderNotFound
from apps.orders.domain import PaymentDetails, check_payment_confirmable
from apps.orders.models import OrderModel
from apps.orders.state_machine import OrderStateMachine

logger = logging.getLogger("payments")


def audit_line(details: PaymentDetails, admin_id: int) -> str:
    line = f"Offline payment confirmed by admin {admin_id}: {details.method.value}, amount {details.amount}"
    if details.payment_notes:
        line += f", notes: {details.payment_notes}"
    return line


class PaymentConfirmationGateway:
    """Admin-invoked confirmation of a PENDING order's payment."""

    def __init__(self, state_machine: OrderStateMachine, epsilon: Optional[Decimal] = None):
        self.state_machine = state_machine
        self.epsilon = epsilon if epsilon is not None else Decimal(getattr(settings, "PAYMENT_AMOUNT_EPSILON", "0.01"))

    def confirm(self, order_id: UUID | str, details: PaymentDetails, admin_id: int) -> OrderModel:
        """Confirm the payment of an order.

        Args:
            order_id: Order being paid.
            details: Method, amount, time and references of the payment.
            admin_id: Admin performing the confirmation.

        Returns:
            The order in status PAID.

        Raises:
            OrderNotFound: Unknown order.
            AlreadyPaid: The order's payment was already confirmed.
            InvalidOrderState: The order is not awaiting payment.
            AmountMismatch: ``details.amount`` differs from the order total
                by more than the configured epsilon.
        """
        with transaction.atomic():
            try:
                order = OrderModel.objects.select_for_update().get(pk=order_id)
            except (OrderModel.DoesNotExist, ValidationError, ValueError):
                raise OrderNotFound(f"order {order_id} does not exist") from None

            check_payment_confirmable(order.status, order.payment_status)

            amount = Decimal(details.amount)
            if abs(amount - order.total_amount) > self.epsilon:
                logger.warning(
                    "payment amount mismatch",
                    extra={
                        "order_number": order.order_number,
                        "expected": str(order.total_amount),
                        "received": str(amount),
                    },
                )
                raise AmountMismatch(
                    f"payment amount {amount} does not match order total {order.total_amount}",
                    extra={"expected": str(order.total_amount), "received": str(amount)},
                )

            paid = self.state_machine.confirm_payment(order.pk, details, admin_id, note=audit_line(details, admin_id))

        logger.info(
            "offline payment confirmed",
            extra={"order_number": paid.order_number, "admin_id": admin_id, "amount": str(amount)},
        )
        return paid
