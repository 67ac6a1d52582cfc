"""Pydantic schemas for the orders API.

Request schemas validate incoming payloads before any service runs; read
schemas shape the JSON returned for orders and their items.
"""

import datetime as dt
from decimal import Decimal
from typing import Annotated, List, Optional
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from .domain import LineRequest, OrderStatus, PaymentDetails, PaymentMethod, PaymentStatus, ShippingAddress


def _aware(v: dt.datetime) -> dt.datetime:
    if v.tzinfo is None:
        return v.replace(tzinfo=dt.timezone.utc)
    return v


# Naive datetimes from clients are taken as UTC.
UtcDatetime = Annotated[dt.datetime, AfterValidator(_aware)]


# ---- Requests ----
class ShippingAddressIn(BaseModel):
    """International shipping address.

    Format rules beyond presence (phone format, ISO country code) are
    checked by the address validation collaborator so the client receives
    its suggestions.
    """

    name: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=1, max_length=32)
    company: Optional[str] = Field(default=None, max_length=100)
    country: str = Field(min_length=1, max_length=64)
    province: str = Field(min_length=1, max_length=100)
    city: str = Field(min_length=1, max_length=100)
    district: Optional[str] = Field(default=None, max_length=100)
    postal_code: Optional[str] = Field(default=None, max_length=20)
    address_line_1: str = Field(min_length=1, max_length=255)
    address_line_2: Optional[str] = Field(default=None, max_length=255)
    address_line_3: Optional[str] = Field(default=None, max_length=255)

    @field_validator("country")
    @classmethod
    def normalize_country(cls, v: str) -> str:
        return v.strip().upper()

    def to_domain(self) -> ShippingAddress:
        return ShippingAddress(**self.model_dump())


class OrderItemIn(BaseModel):
    """Input schema for a single order line."""

    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0, le=999)


class CreateOrderDTO(BaseModel):
    """Schema for creating an order.

    Attributes:
        user_id: Customer the order is placed for; only admins and staff may
            set it, everyone else orders for themselves.
        shipping_address: Address snapshot stored with the order.
        items: At least one line.
    """

    user_id: Optional[int] = Field(default=None, gt=0)
    shipping_address: ShippingAddressIn
    items: List[OrderItemIn] = Field(min_length=1)
    customer_notes: Optional[str] = Field(default=None, max_length=1000)
    payment_method: Optional[str] = Field(default=None, max_length=32)
    shipping_method: Optional[str] = Field(default=None, max_length=64)

    def lines(self) -> List[LineRequest]:
        return [LineRequest(product_id=i.product_id, quantity=i.quantity) for i in self.items]


class ConfirmPaymentDTO(BaseModel):
    """Offline payment confirmation entered by an admin."""

    payment_method: PaymentMethod
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    paid_at: UtcDatetime
    payment_id: Optional[str] = Field(default=None, max_length=128)
    payment_notes: Optional[str] = Field(default=None, max_length=1000)
    transaction_reference: Optional[str] = Field(default=None, max_length=128)
    bank_name: Optional[str] = Field(default=None, max_length=128)
    account_last_four: Optional[str] = Field(default=None, pattern=r"^\d{4}$")

    def to_domain(self) -> PaymentDetails:
        return PaymentDetails(
            method=self.payment_method,
            amount=self.amount,
            paid_at=self.paid_at,
            payment_id=self.payment_id,
            payment_notes=self.payment_notes,
            transaction_reference=self.transaction_reference,
            bank_name=self.bank_name,
            account_last_four=self.account_last_four,
        )


class CancelOrderDTO(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ShipOrderDTO(BaseModel):
    tracking_number: Optional[str] = Field(default=None, max_length=128)
    shipping_method: Optional[str] = Field(default=None, max_length=64)


class RefundOrderDTO(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class OrderQueryDTO(BaseModel):
    """Filters and paging for the order list."""

    user_id: Optional[int] = Field(default=None, gt=0)
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    order_number: Optional[str] = Field(default=None, max_length=32)
    start_date: Optional[UtcDatetime] = None
    end_date: Optional[UtcDatetime] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=100)


# ---- Reads ----
class OrderItemReadDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    product_snapshot: dict


class OrderReadDTO(BaseModel):
    """Order as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: int
    status: OrderStatus
    payment_status: PaymentStatus
    subtotal: Decimal
    shipping_fee: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    currency: str
    shipping_address: dict
    standardized_address: str = ""
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    shipping_method: Optional[str] = None
    tracking_number: Optional[str] = None
    customer_notes: Optional[str] = None
    admin_notes: str = ""
    payment_deadline: dt.datetime
    paid_at: Optional[dt.datetime] = None
    shipped_at: Optional[dt.datetime] = None
    delivered_at: Optional[dt.datetime] = None
    cancelled_at: Optional[dt.datetime] = None
    refunded_at: Optional[dt.datetime] = None
    created_at: dt.datetime
    items: List[OrderItemReadDTO] = []

    @classmethod
    def from_model(cls, order) -> "OrderReadDTO":
        return cls.model_validate(
            {
                **{name: getattr(order, name) for name in cls.model_fields if name != "items"},
                "items": [OrderItemReadDTO.model_validate(i) for i in order.items.all()],
            }
        )


class PaymentStatusReadDTO(BaseModel):
    order_id: UUID
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_deadline: dt.datetime
    is_expired: bool
    remaining_seconds: int
    remaining_minutes: int
