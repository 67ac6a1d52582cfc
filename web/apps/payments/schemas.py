"""Read schemas for payment log entries and payment statistics."""

import datetime as dt
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from apps.orders.domain import OrderStatus, PaymentStatus


class PaymentLogQueryDTO(BaseModel):
    order: Optional[UUID] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class PaymentLogReadDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: UUID
    payment_method: str
    amount: Decimal
    payment_id: Optional[str] = None
    paid_at: dt.datetime
    payment_notes: Optional[str] = None
    transaction_reference: Optional[str] = None
    bank_name: Optional[str] = None
    account_last_four: Optional[str] = None
    admin_id: int
    created_at: dt.datetime


class PaidOrderSummaryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: int
    status: OrderStatus
    payment_status: PaymentStatus
    total_amount: Decimal


class PaymentLogDetailDTO(PaymentLogReadDTO):
    """A payment log entry together with the order it paid."""

    order: PaidOrderSummaryDTO


class PaymentTotalsDTO(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0.00")


class PaymentStatsDTO(BaseModel):
    """Payment totals overall, for today and this month, plus two breakdowns.

    ``by_payment_method`` sums the payment log; ``by_payment_status`` sums
    order totals for every order that has left PENDING payment.
    """

    total_payments: int
    total_amount: Decimal
    today_payments: int
    today_amount: Decimal
    month_payments: int
    month_amount: Decimal
    by_payment_method: Dict[str, PaymentTotalsDTO]
    by_payment_status: Dict[str, PaymentTotalsDTO]
