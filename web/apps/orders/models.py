import uuid
from decimal import Decimal

from django.db import models

from .domain import OrderStatus, PaymentStatus, RESERVING_STATUSES, TERMINAL_STATUSES


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Human-readable number: ORD + YYYYMMDD + 6 digits
    order_number = models.CharField(max_length=32, unique=True, editable=False)
    user_id = models.BigIntegerField(db_index=True)

    class Status(models.TextChoices):
        PENDING = OrderStatus.PENDING.value
        PAID = OrderStatus.PAID.value
        SHIPPED = OrderStatus.SHIPPED.value
        COMPLETED = OrderStatus.COMPLETED.value
        CANCELLED = OrderStatus.CANCELLED.value
        REFUNDED = OrderStatus.REFUNDED.value

    class PaymentStatusChoices(models.TextChoices):
        PENDING = PaymentStatus.PENDING.value
        PAID = PaymentStatus.PAID.value
        CANCELLED = PaymentStatus.CANCELLED.value
        REFUNDED = PaymentStatus.REFUNDED.value

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=16, choices=PaymentStatusChoices.choices, default=PaymentStatusChoices.PENDING
    )

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    shipping_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="EUR")

    # Snapshot taken at creation; never updated afterwards
    shipping_address = models.JSONField(default=dict)
    standardized_address = models.TextField(blank=True, default="")

    payment_method = models.CharField(max_length=32, null=True, blank=True)
    payment_id = models.CharField(max_length=128, null=True, blank=True)
    shipping_method = models.CharField(max_length=64, null=True, blank=True)
    tracking_number = models.CharField(max_length=128, null=True, blank=True)
    customer_notes = models.TextField(null=True, blank=True)
    admin_notes = models.TextField(blank=True, default="")

    payment_deadline = models.DateTimeField(db_index=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    stock_released_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField()
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "payment_status", "payment_deadline"], name="orders_expiry_scan_idx"),
        ]

    def __str__(self):
        return f"{self.order_number} [{self.status}]"

    @property
    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in TERMINAL_STATUSES

    @property
    def holds_reservation(self) -> bool:
        return OrderStatus(self.status) in RESERVING_STATUSES and self.stock_released_at is None


class OrderItemModel(models.Model):
    """Order line with a denormalized product snapshot. Written once, never updated."""

    order = models.ForeignKey(OrderModel, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey("inventory.Product", related_name="order_items", on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    product_snapshot = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_items"
        ordering = ["id"]


class IdempotencyKey(models.Model):
    """Stored outcome of an order-creation request keyed by the client."""

    key = models.CharField(max_length=200)
    user_id = models.BigIntegerField()
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
        constraints = [
            models.UniqueConstraint(fields=["user_id", "key"], name="idempotency_user_key_unique"),
        ]
