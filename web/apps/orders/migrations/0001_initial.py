import uuid
from decimal import Decimal

import django.db.models.deletion
from django.db import migrations, models


ORDER_STATUS_CHOICES = [
    ("PENDING", "Pending"),
    ("PAID", "Paid"),
    ("SHIPPED", "Shipped"),
    ("COMPLETED", "Completed"),
    ("CANCELLED", "Cancelled"),
    ("REFUNDED", "Refunded"),
]

PAYMENT_STATUS_CHOICES = [
    ("PENDING", "Pending"),
    ("PAID", "Paid"),
    ("CANCELLED", "Cancelled"),
    ("REFUNDED", "Refunded"),
]


def money(default="0.00"):
    return models.DecimalField(decimal_places=2, default=Decimal(default), max_digits=12)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("inventory", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="OrderModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("user_id", models.BigIntegerField(db_index=True)),
                ("status", models.CharField(choices=ORDER_STATUS_CHOICES, default="PENDING", max_length=16)),
                ("payment_status", models.CharField(choices=PAYMENT_STATUS_CHOICES, default="PENDING", max_length=16)),
                ("subtotal", money()),
                ("shipping_fee", money()),
                ("tax_amount", money()),
                ("discount_amount", money()),
                ("total_amount", money()),
                ("currency", models.CharField(default="EUR", max_length=3)),
                ("shipping_address", models.JSONField(default=dict)),
                ("standardized_address", models.TextField(blank=True, default="")),
                ("payment_method", models.CharField(blank=True, max_length=32, null=True)),
                ("payment_id", models.CharField(blank=True, max_length=128, null=True)),
                ("shipping_method", models.CharField(blank=True, max_length=64, null=True)),
                ("tracking_number", models.CharField(blank=True, max_length=128, null=True)),
                ("customer_notes", models.TextField(blank=True, null=True)),
                ("admin_notes", models.TextField(blank=True, default="")),
                ("payment_deadline", models.DateTimeField(db_index=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("shipped_at", models.DateTimeField(blank=True, null=True)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("stock_released_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField()),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "payment_status", "payment_deadline"], name="orders_expiry_scan_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderItemModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("quantity", models.PositiveIntegerField()),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("total_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("product_snapshot", models.JSONField(default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="items", to="orders.ordermodel"
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="order_items",
                        to="inventory.product",
                    ),
                ),
            ],
            options={
                "db_table": "order_items",
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("key", models.CharField(max_length=200)),
                ("user_id", models.BigIntegerField()),
                ("request_hash", models.CharField(max_length=64)),
                ("response_status", models.PositiveSmallIntegerField(default=0)),
                ("response_body", models.JSONField(default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to="orders.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "idempotency_keys",
                "constraints": [
                    models.UniqueConstraint(fields=("user_id", "key"), name="idempotency_user_key_unique"),
                ],
            },
        ),
    ]
