"""Stock ledger: the only code allowed to change ``Product.stock``.

Reservations and releases are single conditional UPDATE statements built
with ``F()`` expressions, so two requests racing for the last unit cannot
both succeed and no read-modify-write window exists:

    UPDATE products SET stock = stock - :qty
     WHERE id = :id AND status = 'ACTIVE' AND stock >= :qty

The affected-row count tells whether the reservation happened. Both
operations refuse to run outside ``transaction.atomic()`` so they always
commit or roll back together with the order mutation that triggered them.
"""

import logging
from typing import Iterable, Tuple

from django.db import transaction
from django.db.models import F

from apps.common.errors import InsufficientStock, InvalidQuantity, ProductNotFound, ProductUnavailable
from .models import Product

logger = logging.getLogger("inventory.ledger")


def _require_atomic(using: str | None = None) -> None:
    if not transaction.get_connection(using).in_atomic_block:
        raise RuntimeError("STOCK_MUTATION_OUTSIDE_TRANSACTION")


def _merge(lines: Iterable[Tuple[int, int]]) -> list[tuple[int, int]]:
    """Sum quantities per product and return them in ascending id order.

    A fixed ordering means concurrent multi-line reservations take row
    locks in the same sequence.
    """
    merged: dict[int, int] = {}
    for product_id, qty in lines:
        merged[int(product_id)] = merged.get(int(product_id), 0) + int(qty)
    return sorted(merged.items())


class StockLedger:
    """Atomic increment/decrement primitives over a product's stock count."""

    def reserve(self, product_id: int, qty: int) -> None:
        """Decrement stock by ``qty`` if enough is available.

        Args:
            product_id: Primary key of the product.
            qty: Positive number of units to hold.

        Raises:
            InvalidQuantity: If ``qty`` is not a positive integer.
            ProductNotFound: If no product has this id.
            ProductUnavailable: If the product exists but is not ACTIVE.
            InsufficientStock: If fewer than ``qty`` units are on hand.
            RuntimeError: If called outside ``transaction.atomic()``.
        """
        if qty <= 0:
            raise InvalidQuantity(f"quantity must be > 0, got {qty}")
        _require_atomic()

        updated = Product.objects.filter(
            pk=product_id,
            status=Product.Status.ACTIVE,
            stock__gte=qty,
        ).update(stock=F("stock") - qty)
        if updated == 1:
            logger.info("stock reserved", extra={"product_id": product_id, "quantity": qty})
            return

        # The write did not happen; work out why for the caller.
        status = Product.objects.filter(pk=product_id).values_list("status", flat=True).first()
        if status is None:
            raise ProductNotFound(f"product {product_id} does not exist")
        if status != Product.Status.ACTIVE:
            raise ProductUnavailable(f"product {product_id} is not active", extra={"product_id": product_id})
        logger.info("stock reservation refused", extra={"product_id": product_id, "quantity": qty})
        raise InsufficientStock(
            f"not enough stock for product {product_id}",
            extra={"product_id": product_id, "available": self.available(product_id)},
        )

    def release(self, product_id: int, qty: int) -> None:
        """Increment stock by ``qty``, returning held units to the shelf.

        Releasing is a plain increment. Callers guarantee it runs at most
        once per reservation by guarding the order transition that triggers
        it in the same transaction.

        Raises:
            InvalidQuantity: If ``qty`` is not a positive integer.
            ProductNotFound: If no product has this id.
            RuntimeError: If called outside ``transaction.atomic()``.
        """
        if qty <= 0:
            raise InvalidQuantity(f"quantity must be > 0, got {qty}")
        _require_atomic()

        updated = Product.objects.filter(pk=product_id).update(stock=F("stock") + qty)
        if updated != 1:
            raise ProductNotFound(f"product {product_id} does not exist")
        logger.info("stock released", extra={"product_id": product_id, "quantity": qty})

    def reserve_many(self, lines: Iterable[Tuple[int, int]]) -> None:
        """Reserve several ``(product_id, qty)`` lines, all or nothing.

        The first failure propagates; the enclosing transaction is expected
        to roll back the lines already reserved.
        """
        for product_id, qty in _merge(lines):
            self.reserve(product_id, qty)

    def release_many(self, lines: Iterable[Tuple[int, int]]) -> None:
        for product_id, qty in _merge(lines):
            self.release(product_id, qty)

    def available(self, product_id: int) -> int:
        """Current on-hand stock, for diagnostics only. Never decide a write on it."""
        stock = Product.objects.filter(pk=product_id).values_list("stock", flat=True).first()
        if stock is None:
            raise ProductNotFound(f"product {product_id} does not exist")
        return stock
