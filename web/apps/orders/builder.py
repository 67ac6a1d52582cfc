"""Order builder: validates a request, reserves stock and creates the order.

Everything that writes happens inside one ``transaction.atomic()`` block:
loading the products, reserving every line through the stock ledger,
inserting the order with its line snapshots. The first failure rolls the
whole block back, so a failed request never leaves a partial reservation.
"""

import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.common.errors import (
    EmptyOrder,
    InvalidAddress,
    InvalidQuantity,
    OrderNumberExhausted,
    ProductUnavailable,
)
from apps.inventory.ledger import StockLedger
from apps.inventory.models import Product
from .domain import AddressValidatorPort, LineRequest, OrderStatus, PaymentStatus, PricingPolicy, ShippingAddress
from .models import OrderItemModel, OrderModel

logger = logging.getLogger("orders")

CENT = Decimal("0.01")


def generate_order_number(now: datetime) -> str:
    """``ORD`` + ``YYYYMMDD`` + 6 random digits, e.g. ``ORD20240115004217``."""
    return f"ORD{now:%Y%m%d}{secrets.randbelow(1_000_000):06d}"


def merge_lines(lines: Iterable[LineRequest]) -> List[LineRequest]:
    """Collapse repeated products into one line, keeping first-seen order."""
    merged: dict[int, int] = {}
    for line in lines:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return [LineRequest(product_id=pid, quantity=qty) for pid, qty in merged.items()]


def product_snapshot(product: Product) -> dict:
    return {
        "id": product.pk,
        "sku": product.sku,
        "name": product.name,
        "price": str(product.price),
    }


class OrderBuilder:
    """Creates PENDING orders holding a stock reservation.

    Args:
        ledger: Stock ledger used for every stock decrement.
        address_validator: Collaborator that validates the shipping address.
        pricing: Policy computing shipping, tax and discount.
        clock: Returns the current aware datetime; the order's
            ``created_at`` and ``payment_deadline`` derive from one call.
        number_factory: Produces candidate order numbers.
    """

    def __init__(
        self,
        ledger: StockLedger,
        address_validator: AddressValidatorPort,
        pricing: PricingPolicy,
        clock: Callable[[], datetime] = timezone.now,
        number_factory: Callable[[datetime], str] = generate_order_number,
    ):
        self.ledger = ledger
        self.address_validator = address_validator
        self.pricing = pricing
        self.clock = clock
        self.number_factory = number_factory

    @property
    def payment_window(self) -> timedelta:
        return timedelta(minutes=getattr(settings, "ORDER_PAYMENT_WINDOW_MINUTES", 30))

    def create(
        self,
        user_id: int,
        shipping_address: ShippingAddress,
        lines: List[LineRequest],
        customer_notes: Optional[str] = None,
        payment_method: Optional[str] = None,
        shipping_method: Optional[str] = None,
    ) -> OrderModel:
        """Validate, reserve stock and persist a new order.

        Returns:
            The created order with its items prefetched.

        Raises:
            EmptyOrder: No lines were requested.
            InvalidQuantity: A line quantity is outside ``1..ORDER_MAX_LINE_QUANTITY``.
            InvalidAddress: The address collaborator rejected the address.
            ProductUnavailable: A product is missing or not ACTIVE.
            InsufficientStock: A line cannot be reserved.
            OrderNumberExhausted: No free order number within ORDER_NUMBER_MAX_ATTEMPTS tries.
        """
        lines = self._validate_lines(lines)
        validation = self.address_validator.validate(shipping_address)
        if not validation.is_valid:
            raise InvalidAddress("shipping address rejected", extra={"suggestions": validation.suggestions})

        with transaction.atomic():
            products = Product.objects.in_bulk([line.product_id for line in lines])
            unavailable = sorted(
                line.product_id
                for line in lines
                if line.product_id not in products or not products[line.product_id].is_active
            )
            if unavailable:
                raise ProductUnavailable(
                    "some products do not exist or are no longer on sale",
                    extra={"product_ids": unavailable},
                )

            self.ledger.reserve_many((line.product_id, line.quantity) for line in lines)

            items = []
            subtotal = Decimal("0.00")
            for line in lines:
                product = products[line.product_id]
                unit_price = Decimal(product.price).quantize(CENT)
                total_price = (unit_price * line.quantity).quantize(CENT)
                subtotal += total_price
                items.append(
                    OrderItemModel(
                        product=product,
                        quantity=line.quantity,
                        unit_price=unit_price,
                        total_price=total_price,
                        product_snapshot=product_snapshot(product),
                    )
                )

            charges = self.pricing.charges(subtotal, lines, shipping_address)
            total = subtotal + charges.shipping_fee + charges.tax_amount - charges.discount_amount

            now = self.clock()
            order = self._insert_order(
                now,
                user_id=user_id,
                status=OrderStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                subtotal=subtotal,
                shipping_fee=charges.shipping_fee,
                tax_amount=charges.tax_amount,
                discount_amount=charges.discount_amount,
                total_amount=total.quantize(CENT),
                currency=getattr(settings, "ORDER_CURRENCY", "EUR"),
                shipping_address=shipping_address.as_dict(),
                standardized_address=validation.standardized_address or "",
                payment_method=payment_method,
                shipping_method=shipping_method,
                customer_notes=customer_notes,
                payment_deadline=now + self.payment_window,
                created_at=now,
            )
            for item in items:
                item.order = order
            OrderItemModel.objects.bulk_create(items)

        logger.info(
            "order created",
            extra={
                "order_number": order.order_number,
                "user_id": user_id,
                "total_amount": str(order.total_amount),
                "lines": len(items),
            },
        )
        return OrderModel.objects.prefetch_related("items").get(pk=order.pk)

    def _validate_lines(self, lines: List[LineRequest]) -> List[LineRequest]:
        if not lines:
            raise EmptyOrder("an order needs at least one item")
        max_qty = getattr(settings, "ORDER_MAX_LINE_QUANTITY", 999)
        for line in lines:
            if not isinstance(line.quantity, int) or line.quantity < 1 or line.quantity > max_qty:
                raise InvalidQuantity(
                    f"quantity must be between 1 and {max_qty}",
                    extra={"product_id": line.product_id},
                )
        merged = merge_lines(lines)
        for line in merged:
            if line.quantity > max_qty:
                raise InvalidQuantity(
                    f"quantity must be between 1 and {max_qty}",
                    extra={"product_id": line.product_id},
                )
        return merged

    def _insert_order(self, now: datetime, **fields) -> OrderModel:
        """Insert the order, drawing a new number when the current one is taken.

        Each attempt runs in a nested savepoint so a unique-constraint
        violation only rolls back that insert, not the reservations.
        """
        attempts = getattr(settings, "ORDER_NUMBER_MAX_ATTEMPTS", 5)
        for attempt in range(1, attempts + 1):
            number = self.number_factory(now)
            try:
                with transaction.atomic():
                    return OrderModel.objects.create(order_number=number, **fields)
            except IntegrityError:
                logger.warning("order number collision", extra={"order_number": number, "attempt": attempt})
        raise OrderNumberExhausted(f"no free order number after {attempts} attempts")
