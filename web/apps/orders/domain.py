"""Domain types, ports and the order state machine's transition table.

This module has no Django ORM dependencies. It holds the enums shared by
models and services, small dataclasses used as DTOs between the API layer
and the services, protocol definitions (ports) for external collaborators
such as address validation and pricing, and the pure transition table that
decides which lifecycle moves are legal.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Protocol

from apps.common.errors import AlreadyPaid, InvalidOrderState


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle status of an order.

    CANCELLED, COMPLETED and REFUNDED are terminal and never re-opened.
    """

    PENDING = "PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    WIRE_TRANSFER = "WIRE_TRANSFER"
    CHECK = "CHECK"
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"
    ALIPAY = "ALIPAY"
    WECHAT_PAY = "WECHAT_PAY"
    OTHER = "OTHER"


class OrderEvent(str, Enum):
    CONFIRM_PAYMENT = "CONFIRM_PAYMENT"
    CANCEL = "CANCEL"
    EXPIRE = "EXPIRE"
    SHIP = "SHIP"
    DELIVER = "DELIVER"
    REFUND = "REFUND"


class Role(str, Enum):
    USER = "USER"
    STAFF = "STAFF"
    ADMIN = "ADMIN"


TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.COMPLETED, OrderStatus.REFUNDED})

# Orders in these states still hold their stock reservation.
RESERVING_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.SHIPPED})


# ---- Transition table ----
TRANSITIONS: Dict[tuple[OrderStatus, OrderEvent], OrderStatus] = {
    (OrderStatus.PENDING, OrderEvent.CONFIRM_PAYMENT): OrderStatus.PAID,
    (OrderStatus.PENDING, OrderEvent.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PENDING, OrderEvent.EXPIRE): OrderStatus.CANCELLED,
    (OrderStatus.PAID, OrderEvent.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.SHIPPED, OrderEvent.DELIVER): OrderStatus.COMPLETED,
    (OrderStatus.PENDING, OrderEvent.REFUND): OrderStatus.REFUNDED,
    (OrderStatus.PAID, OrderEvent.REFUND): OrderStatus.REFUNDED,
    (OrderStatus.SHIPPED, OrderEvent.REFUND): OrderStatus.REFUNDED,
}


def next_status(current: OrderStatus | str, event: OrderEvent) -> OrderStatus:
    """Return the status reached from ``current`` on ``event``.

    Raises:
        InvalidOrderState: If the transition is not in the table.
    """
    current = OrderStatus(current)
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidOrderState(f"cannot {event.value.lower()} an order in status {current.value}") from None


def check_payment_confirmable(status: OrderStatus | str, payment_status: PaymentStatus | str) -> None:
    """Guard for the PENDING -> PAID move.

    Re-confirmation is rejected rather than ignored, because a second
    confirmation would write a second payment log.

    Raises:
        AlreadyPaid: If the payment was already confirmed.
        InvalidOrderState: If the order is not awaiting payment.
    """
    if PaymentStatus(payment_status) == PaymentStatus.PAID:
        raise AlreadyPaid("payment already confirmed for this order")
    if OrderStatus(status) != OrderStatus.PENDING or PaymentStatus(payment_status) != PaymentStatus.PENDING:
        raise InvalidOrderState("only orders awaiting payment can be confirmed")


def payment_status_after(event: OrderEvent, current: PaymentStatus | str) -> PaymentStatus:
    """Payment status written together with the order status for ``event``."""
    current = PaymentStatus(current)
    if event == OrderEvent.CONFIRM_PAYMENT:
        return PaymentStatus.PAID
    if event in (OrderEvent.CANCEL, OrderEvent.EXPIRE):
        return PaymentStatus.CANCELLED
    if event == OrderEvent.REFUND:
        # Nothing was collected for an unpaid order, so there is nothing to refund.
        return PaymentStatus.REFUNDED if current == PaymentStatus.PAID else PaymentStatus.CANCELLED
    return current


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Actor:
    """Caller identity supplied by the authentication layer.

    Passed explicitly into every operation instead of being read from
    request-scoped globals.
    """

    user_id: int
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role in (Role.ADMIN, Role.STAFF)

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def pk(self) -> int:
        # DRF throttles key authenticated callers on ``request.user.pk``.
        return self.user_id


@dataclass(frozen=True)
class LineRequest:
    """A requested order line: product and quantity."""

    product_id: int
    quantity: int


@dataclass(frozen=True)
class ShippingAddress:
    """Structured shipping address, stored as an immutable snapshot."""

    name: str
    phone: str
    country: str
    province: str
    city: str
    address_line_1: str
    company: Optional[str] = None
    district: Optional[str] = None
    postal_code: Optional[str] = None
    address_line_2: Optional[str] = None
    address_line_3: Optional[str] = None

    def as_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class AddressValidation:
    """Result returned by an address validation collaborator."""

    is_valid: bool
    standardized_address: Optional[str] = None
    verification_level: str = "none"
    suggestions: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Charges:
    shipping_fee: Decimal = Decimal("0.00")
    tax_amount: Decimal = Decimal("0.00")
    discount_amount: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class PaymentDetails:
    """Offline payment data entered by an admin when confirming an order."""

    method: PaymentMethod
    amount: Decimal
    paid_at: datetime
    payment_id: Optional[str] = None
    payment_notes: Optional[str] = None
    transaction_reference: Optional[str] = None
    bank_name: Optional[str] = None
    account_last_four: Optional[str] = None


# ---- Ports (DIP) ----
class AddressValidatorPort(Protocol):
    """Port describing the address validation collaborator."""

    def validate(self, address: ShippingAddress) -> AddressValidation:
        """Validate and standardize ``address``.

        Returns:
            AddressValidation with ``is_valid`` False and suggestions when
            the address is rejected.
        """
        raise NotImplementedError()


class PricingPolicy(Protocol):
    """Port computing shipping, tax and discount for an order.

    The default policy charges nothing; it is the extension point for real
    pricing rules.
    """

    def charges(self, subtotal: Decimal, lines: List[LineRequest], address: ShippingAddress) -> Charges:
        raise NotImplementedError()
